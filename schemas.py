import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel


class ReportType(str, Enum):
    ACCIDENT = "accident"
    POLICE = "police"
    TRAFFIC = "traffic"
    HAZARD = "hazard"


class Congestion(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# --- Domain Records ---

@dataclass
class Location:
    lat: float
    lng: float


@dataclass
class User:
    id: int
    username: str
    lat: float
    lng: float
    last_seen: datetime


@dataclass
class Report:
    id: int
    type: ReportType
    lat: float
    lng: float
    description: str
    user_id: int
    created_at: datetime
    votes: int = 1


@dataclass
class TrafficSample:
    lat: float
    lng: float
    speed: float  # km/h
    congestion: Congestion
    timestamp: datetime


@dataclass
class Stats:
    users_online: int
    total_reports: int
    traffic_points: int


@dataclass
class Route:
    origin: Location
    destination: Location
    points: List[Location] = field(default_factory=list)
    distance_km: float = 0.0
    duration_min: int = 0
    bearing: float = 0.0
    direction: str = "N"


def traffic_key(lat: float, lng: float) -> str:
    """Quantized sample key; nearby points at the same nominal location collide."""
    return f"{lat:.4f},{lng:.4f}"


# --- Push Channel (outbound) ---

class StatsMessage(BaseModel):
    type: str = "stats"
    users_online: int
    total_reports: int
    traffic_points: int
    reports: Optional[List[Report]] = None


class NewReportMessage(BaseModel):
    type: str = "new_report"
    report: Report
    reports: List[Report]


# --- Push Channel (inbound) ---

class ClientMessageKind(str, Enum):
    PING = "ping"
    REQUEST_STATS = "request_stats"
    UNKNOWN = "unknown"


@dataclass
class ClientMessage:
    kind: ClientMessageKind
    raw_type: Optional[str] = None


def parse_client_message(raw: str) -> ClientMessage:
    """
    Decode one inbound subscriber frame.

    Raises ValueError when the frame is not a JSON object. A missing or
    non-string ``type`` and any unrecognized type map to UNKNOWN.
    """
    payload: Any = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("message must be a JSON object")

    msg_type = payload.get("type")
    if not isinstance(msg_type, str):
        return ClientMessage(ClientMessageKind.UNKNOWN)
    try:
        kind = ClientMessageKind(msg_type)
    except ValueError:
        kind = ClientMessageKind.UNKNOWN
    if kind == ClientMessageKind.UNKNOWN:
        return ClientMessage(ClientMessageKind.UNKNOWN, raw_type=msg_type)
    return ClientMessage(kind, raw_type=msg_type)
