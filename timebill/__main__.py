from timebill.cli.app import main_menu
from timebill.db import initialize_db
from timebill.logging import configure_logging


def main() -> None:
    configure_logging()
    initialize_db()
    main_menu()


if __name__ == "__main__":
    main()
