"""Command line interface for testing configuration loading"""
from pathlib import Path

from . import load_settings, DEFAULTS, FLOORS


def main():
    """Display loaded configuration"""
    settings = load_settings()

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.items():
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    lines = ["[DEFAULT]"]
    for key, value in DEFAULTS.items():
        if key in FLOORS:
            lines.append(f"# minimum {FLOORS[key]}")
        lines.append(f"{key} = {value}")

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("\n".join(lines) + "\n")


if __name__ == "__main__":
    main()
