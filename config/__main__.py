"""Print the loaded PipaPal settings, or write an example settings file."""
import argparse
from pathlib import Path

from . import settings_conf, DEFAULTS

SECRET_KEYS = {'session_secret', 'openai_api_key'}


def main():
    parser = argparse.ArgumentParser(description="Show the effective PipaPal settings")
    parser.add_argument('--write-example', metavar='PATH',
                        help="Write the default settings to PATH and exit")
    args = parser.parse_args()

    if args.write_example:
        path = Path(args.write_example)
        with open(path, "w") as f:
            f.write("[DEFAULT]\n")
            for key, value in DEFAULTS.items():
                f.write(f"{key} = {value}\n")
        print(f"Wrote {path}")
        return

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS and value:
            value = '*' * 8
        print(f"{key}: {value}")


if __name__ == "__main__":
    main()
