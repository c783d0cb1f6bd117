import argparse
import sys

from ..frequency import config_to_dict
from ..repository import SqliteRecurringRepository


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="List recurring expense templates")
    parser.add_argument("--db", default=None, help="path to the SQLite database")
    parser.add_argument("--active", action="store_true", help="only active templates")
    args = parser.parse_args(argv)

    try:
        sys.stdout.reconfigure(encoding="utf-8")
    except AttributeError:
        pass

    repo = SqliteRecurringRepository(args.db)
    for t in repo.list_templates(active_only=args.active):
        print(
            f"{t.id}\t{t.name}\t{t.amount}\t{t.category}\t{t.frequency}\t{config_to_dict(t.config)}\t"
            f"{t.next_generate}\t{t.last_generated or ''}\t{int(t.is_active)}\t{int(t.skip_holidays)}"
        )


if __name__ == "__main__":
    main()
