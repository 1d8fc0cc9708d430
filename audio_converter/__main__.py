"""Package entry point for ``python -m audio_converter``."""

from audio_converter.cli import main

if __name__ == "__main__":
    main()
