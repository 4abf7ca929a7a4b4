#!/usr/bin/env python3
"""
Telemetry Engine Demo
Runs an emulated temperature sensor under a compressed clock so that hourly,
daily and yearly retention can be watched in seconds.

Usage:
    python telemetry_demo.py 30                        # 30s run, hour=5s, day=10s, year=20s
    python telemetry_demo.py 120 --hour 10 --day 60    # Custom clock
    python telemetry_demo.py 60 --backend sqlite       # SQLite store
    python telemetry_demo.py 60 --interval 0.1         # 10 readings per second
"""

import argparse
import shutil
import time
from pathlib import Path

import psutil

from telemetry_engine import (
    ClockConfig,
    EngineConfig,
    StorageConfig,
    SyntheticGenerator,
    TelemetryConfig,
    TelemetryEngine,
    Tier,
)
from telemetry_engine.logger import TelemetryLogger, get_logger


def get_memory_usage():
    """Get current process memory usage."""
    process = psutil.Process()
    memory_info = process.memory_info()
    return {
        'rss_mb': memory_info.rss / (1024 * 1024),
        'vms_mb': memory_info.vms / (1024 * 1024),
        'system_available_mb': psutil.virtual_memory().available / (1024 * 1024)
    }


def print_tier_summary(engine: TelemetryEngine):
    store_stats = engine.get_stats().get('store', {})
    print(f"\nFINAL TIER DISTRIBUTION")
    print("-" * 35)
    for tier in Tier:
        units = engine.store.backend.list_units(tier)
        print(f"  {tier.value:>6}: {engine.store.count(tier):6,} readings in {len(units):3d} unit(s) "
              f"| rotations: {store_stats['rotations'][tier.value]:3d} "
              f"| deleted: {store_stats['deleted_units'][tier.value]:3d}")
    if any(store_stats['unparseable_units'].values()):
        print(f"  Unparseable units kept: {store_stats['unparseable_units']}")


def demo_engine(seconds: float, hour: float, day: float, year: float, interval: float,
                backend: str = "file", storage_dir: str = None, seed: int = None):
    """Main demonstration function."""
    config = TelemetryConfig()

    if storage_dir is None:
        storage_dir = f"./telemetry_demo_{backend}_storage"
    storage_path = Path(storage_dir)
    log_dir = storage_path.parent / f"{storage_path.name}_logs"

    # Clean previous runs
    if storage_path.exists():
        print(f"Cleaning previous storage: {storage_path}")
        shutil.rmtree(storage_path)
    storage_path.mkdir(parents=True, exist_ok=True)

    # Log next to the storage unless the config names a directory
    if config.logging.log_dir is None:
        config.logging.log_dir = str(log_dir)
    config.setup_logging()
    logger = get_logger("TelemetryDemo")

    store = str(storage_path if backend == "file" else storage_path / "telemetry.db")
    engine_config = EngineConfig(
        storage=StorageConfig(backend, store),
        clock=ClockConfig.scaled(hour, day, year),
        measurement_interval=interval,
        recent_capacity=config.recent_capacity,
    )

    print("TELEMETRY ENGINE DEMO")
    print("=" * 50)
    print(f"Run time: {seconds:.0f}s, one reading every {interval}s")
    print(f"Clock: hour={hour}s, day={day}s, year={year}s")
    print(f"Storage: {backend} at {store}")
    print(f"Logs: {TelemetryLogger.get_log_file()}")
    print()

    engine = TelemetryEngine()
    result = engine.initialize(engine_config)
    if not result:
        print(f"Failed to initialize engine: {result.error}")
        return

    logger.info(f"=== Starting telemetry demo: {seconds}s ===")
    with engine:
        generator = SyntheticGenerator(engine, seed=seed)
        engine.attach(generator)

        start = time.time()
        while time.time() - start < seconds:
            time.sleep(1.0)
            recent = engine.get_recent(1)
            stamp = recent[0].timestamp.strftime("%H:%M:%S") if recent else "-"
            stats = engine.get_stats()
            print(f"  [{stamp}] current: {engine.get_current():6.2f} "
                  f"| hourly avg: {engine.get_hourly_average():6.2f} "
                  f"| daily avg: {engine.get_daily_average():6.2f} "
                  f"| logged: {stats['readings_logged']:5d} "
                  f"| hours crossed: {stats['boundaries_crossed']['hour']:3d}")

        print_tier_summary(engine)

        memory = get_memory_usage()
        print(f"\nMEMORY USAGE")
        print("-" * 20)
        print(f"  Process RAM: {memory['rss_mb']:.1f}MB")
        print(f"  System available: {memory['system_available_mb']:.1f}MB")

    logger.info("=== Telemetry demo completed ===")
    print(f"\nDemo completed: {generator.produced:,} readings produced")


def main():
    """Parse arguments and run the demo."""
    parser = argparse.ArgumentParser(
        description="Telemetry Engine Demo - tiered retention under a compressed clock",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python telemetry_demo.py 30                       # Quick run
  python telemetry_demo.py 120 --hour 10 --day 60   # Slower clock
  python telemetry_demo.py 60 --backend sqlite      # SQLite store
        """
    )

    parser.add_argument("seconds", type=float, help="Real seconds to run")
    parser.add_argument("--hour", type=float, default=5.0, help="Real seconds per virtual hour")
    parser.add_argument("--day", type=float, default=10.0, help="Real seconds per virtual day")
    parser.add_argument("--year", type=float, default=20.0, help="Real seconds per virtual year")
    parser.add_argument("--interval", type=float, default=0.25, help="Real seconds between readings")
    parser.add_argument("--backend", choices=["file", "sqlite"], default="file")
    parser.add_argument("--storage", type=str, help="Custom storage directory")
    parser.add_argument("--seed", type=int, help="Random seed for the emulated sensor")

    args = parser.parse_args()

    if args.seconds <= 0 or args.interval <= 0:
        print("Error: run time and interval must be positive")
        return
    if min(args.hour, args.day, args.year) <= 0:
        print("Error: clock durations must be positive")
        return

    try:
        demo_engine(
            seconds=args.seconds,
            hour=args.hour,
            day=args.day,
            year=args.year,
            interval=args.interval,
            backend=args.backend,
            storage_dir=args.storage,
            seed=args.seed,
        )
    except KeyboardInterrupt:
        print("\nDemo interrupted by user")


if __name__ == "__main__":
    main()
