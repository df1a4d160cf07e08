"""Main entry point for the review engine."""
from smartalk.app import SmarTalkEngine
from smartalk.logging_config import setup_logging


def main() -> None:
    """Run the engine."""
    setup_logging("Starting SmarTalk review engine ...")
    SmarTalkEngine().run()


if __name__ == "__main__":
    main()
