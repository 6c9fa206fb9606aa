import datetime
import os
import random
import select
import sys
import time
from collections import deque

from rich import box
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from config import load_config, zones_from_config
from generator import TrafficGenerator
from geo import format_distance, haversine_km
from janitor import Janitor
from schemas import Congestion, ReportType, traffic_key
from simulation_controller import SimulationController
from store import StateStore

if os.name == "nt":
    import msvcrt
else:
    msvcrt = None

# --- Configuration ---
REFRESH_RATE = 4  # Hz
LOG_SIZE = 8

CONGESTION_COLORS = {
    Congestion.LOW: "green",
    Congestion.MEDIUM: "yellow",
    Congestion.HIGH: "red",
}

log_messages = deque(maxlen=LOG_SIZE)


def generate_header(store: StateStore, sim: SimulationController) -> Panel:
    real_time = datetime.datetime.now().strftime("%H:%M:%S")
    stats = store.stats()
    state = "PAUSED" if sim.paused else "RUNNING"
    status = (
        f"Time: {real_time} | Users: {stats.users_online} | Reports: {stats.total_reports} | "
        f"[bold yellow]Traffic points: {stats.traffic_points}[/bold yellow] | Sim: {state} ({sim.ticks} ticks)"
    )
    return Panel(status, style="bold white on blue", box=box.ROUNDED)


def generate_traffic_table(store: StateStore, gen: TrafficGenerator) -> Table:
    table = Table(title="Live Traffic Zones", box=box.SIMPLE_HEAD, expand=True)
    table.add_column("Zone")
    table.add_column("Speed (km/h)", justify="right")
    table.add_column("Congestion", justify="center")
    table.add_column("Updated", justify="right")

    samples = store.all_traffic_samples()
    for zone in gen.zones:
        sample = samples.get(traffic_key(zone.lat, zone.lng))
        if sample is None:
            table.add_row(zone.name, "-", "-", "-")
            continue
        level = Congestion(sample.congestion)
        color = CONGESTION_COLORS[level]
        table.add_row(
            zone.name,
            f"{sample.speed:.0f}",
            f"[{color}]{level.value.upper()}[/{color}]",
            sample.timestamp.astimezone().strftime("%H:%M:%S"),
        )
    return table


def generate_reports_panel(store: StateStore) -> Panel:
    text = Text()
    reports = sorted(store.recent_reports(), key=lambda r: r.created_at, reverse=True)
    for r in reports[:LOG_SIZE]:
        text.append(f"#{r.id} {r.type.value:<8} ", style="bold")
        text.append(f"{r.description} ({r.votes} votes)\n")
    if not reports:
        text.append("No recent reports\n", style="dim")
    return Panel(text, title="Recent Reports", border_style="cyan", box=box.ROUNDED)


def generate_log_panel() -> Panel:
    text = Text.from_markup("\n".join(log_messages))
    return Panel(text, title="Event Stream", border_style="magenta", box=box.ROUNDED)


def generate_help_panel() -> Panel:
    return Panel(
        "[bold]R[/bold]: Random report  |  [bold]U[/bold]: Random user  |  "
        "[bold]S[/bold]: Sweep  |  [bold]P[/bold]: Pause/Resume  |  [bold]Q[/bold]: Quit",
        title="Controls",
        border_style="white",
        box=box.ROUNDED,
    )


def make_layout() -> Layout:
    layout = Layout()
    layout.split_column(
        Layout(name="header", size=3),
        Layout(name="body"),
        Layout(name="footer", size=3),
    )
    layout["body"].split_row(
        Layout(name="left", ratio=2),
        Layout(name="right", ratio=1),
    )
    layout["right"].split_column(
        Layout(name="reports"),
        Layout(name="log"),
    )
    return layout


def update_layout(layout: Layout, store: StateStore, sim: SimulationController, gen: TrafficGenerator):
    layout["header"].update(generate_header(store, sim))
    layout["left"].update(generate_traffic_table(store, gen))
    layout["reports"].update(generate_reports_panel(store))
    layout["log"].update(generate_log_panel())
    layout["footer"].update(generate_help_panel())


def _stamp() -> str:
    return datetime.datetime.now().strftime("%H:%M:%S")


def submit_random_report(store: StateStore, gen: TrafficGenerator):
    zone = random.choice(gen.zones)
    rtype = random.choice(list(ReportType))
    lat = zone.lat + random.uniform(-0.002, 0.002)
    lng = zone.lng + random.uniform(-0.002, 0.002)
    report = store.create_report(rtype, lat, lng, f"Reported near {zone.name}", author_id=1)
    offset = format_distance(haversine_km(zone.lat, zone.lng, lat, lng))
    log_messages.append(f"[{_stamp()}] [bold red]{rtype.value.upper()}[/bold red] #{report.id} {offset} from {zone.name}")


def register_random_user(store: StateStore, gen: TrafficGenerator):
    zone = random.choice(gen.zones)
    user = store.create_user(f"driver-{random.randint(100, 999)}", zone.lat, zone.lng)
    log_messages.append(f"[{_stamp()}] [green]{user.username}[/green] joined at {zone.name} (id {user.id})")


def read_key():
    if msvcrt:
        if msvcrt.kbhit():
            return msvcrt.getch().decode(errors="ignore").lower()
        return None
    ready, _, _ = select.select([sys.stdin], [], [], 0)
    if ready:
        return sys.stdin.read(1).lower()
    return None


def main():
    config = load_config()
    store = StateStore()
    store.seed_sample_data()
    gen = TrafficGenerator(zones_from_config(config))
    # Faster ticks than the server so the dashboard moves.
    sim = SimulationController(store, gen, tick_interval=5.0)
    janitor = Janitor(store, sweep_interval=config["retention"]["sweep_interval_sec"])

    sim.start()
    janitor.start()
    layout = make_layout()

    with Live(layout, refresh_per_second=REFRESH_RATE, screen=True):
        try:
            while True:
                key = read_key()
                if key == "q":
                    break
                elif key == "r":
                    submit_random_report(store, gen)
                elif key == "u":
                    register_random_user(store, gen)
                elif key == "s":
                    janitor.run_once()
                    log_messages.append(f"[{_stamp()}] [cyan]Sweep completed[/cyan]")
                elif key == "p":
                    if sim.paused:
                        sim.resume()
                    else:
                        sim.pause()

                update_layout(layout, store, sim, gen)
                time.sleep(1 / REFRESH_RATE)
        except KeyboardInterrupt:
            pass
        finally:
            sim.stop()
            janitor.stop()


if __name__ == "__main__":
    main()
