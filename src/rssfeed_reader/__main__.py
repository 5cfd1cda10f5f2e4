"""Entry point for the RSS feed reader: python -m rssfeed_reader"""

import asyncio
import logging
import os
import shlex

from rssfeed_reader.feed_parser import DEFAULT_FETCH_TIMEOUT, FeedError
from rssfeed_reader.models import FeedSnapshot
from rssfeed_reader.poller import DEFAULT_POLL_INTERVAL
from rssfeed_reader.store import Store
from rssfeed_reader.sync import FeedSync

DEFAULT_DATA_DIR = os.path.join("~", ".rssfeed_reader")

HELP = """Commands:
  list                   show sources (* = has unread items)
  add NAME URL           add a feed
  edit N NAME URL        change source N
  delete N               remove source N
  select N | none        show source N
  items                  show items of the selected source
  read N / unread N      mark item N
  read-all               mark every item of the selected source read
  refresh                refresh the selected source
  refresh-all            refresh every source
  quit"""

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)


class Console:
    """Text front-end that renders the latest engine snapshot."""

    def __init__(self, sync: FeedSync):
        self.sync = sync
        self.snapshot = FeedSnapshot()
        sync.subscribe(self.on_snapshot)

    def on_snapshot(self, snapshot: FeedSnapshot) -> None:
        self.snapshot = snapshot

    def print_sources(self) -> None:
        if not self.snapshot.sources:
            print("No feeds yet. Use: add NAME URL")
            return
        for n, source in enumerate(self.snapshot.sources, 1):
            marker = "*" if source.id in self.snapshot.unread_source_ids else " "
            current = ">" if self.snapshot.selected and self.snapshot.selected.id == source.id else " "
            state = self.snapshot.state_for(source).value
            print(f"{current}{marker} {n}. {source.name} <{source.url}> [{state}]")

    def print_items(self) -> None:
        if self.snapshot.selected is None:
            print("Add or select a feed.")
            return
        print(f"== {self.snapshot.selected.name}")
        if self.snapshot.status_message:
            print(f"({self.snapshot.status_message})")
        for n, item in enumerate(self.snapshot.items, 1):
            flag = " " if self.sync.is_read(item) else "N"
            print(f"{flag} {n}. {item.title} <{item.link}>")

    def _source(self, arg: str):
        return self.snapshot.sources[int(arg) - 1]

    def _item(self, arg: str):
        return self.snapshot.items[int(arg) - 1]

    async def handle(self, command: str, args: list[str]) -> None:
        if command == "list":
            self.print_sources()
        elif command == "add" and len(args) == 2:
            await self.sync.validate_feed(args[1])
            await self.sync.add_source(args[0], args[1])
            self.print_items()
        elif command == "edit" and len(args) == 3:
            await self.sync.update_source(self._source(args[0]), args[1], args[2])
            self.print_sources()
        elif command == "delete" and len(args) == 1:
            await self.sync.delete_source(self._source(args[0]))
            self.print_sources()
        elif command == "select" and len(args) == 1:
            source = None if args[0] == "none" else self._source(args[0])
            await self.sync.select_source(source)
            self.print_items()
        elif command == "items":
            self.print_items()
        elif command == "read" and len(args) == 1:
            await self.sync.mark_read(self._item(args[0]))
        elif command == "unread" and len(args) == 1:
            await self.sync.mark_unread(self._item(args[0]))
        elif command == "read-all":
            count = await self.sync.mark_all_as_read()
            print(f"Marked {count} items read.")
        elif command == "refresh":
            await self.sync.force_refresh_selected()
            self.print_items()
        elif command == "refresh-all":
            await self.sync.refresh_all(background=False)
            self.print_sources()
        else:
            print(HELP)


async def command_loop(console: Console) -> None:
    """Run the interactive command loop."""
    print("RSS reader ready! Type 'help' for commands (Ctrl+C to quit).\n")
    console.print_sources()

    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break

        try:
            parts = shlex.split(line)
        except ValueError as e:
            print(f"Could not parse command: {e}")
            continue
        if not parts:
            continue
        if parts[0] in ("quit", "exit"):
            break

        try:
            await console.handle(parts[0], parts[1:])
        except FeedError as e:
            print(f"Error: {e}")
        except (IndexError, ValueError):
            print("No such entry.")


async def main() -> None:
    """Initialize and run the RSS feed reader."""
    data_dir = os.path.expanduser(os.environ.get("RSS_DATA_DIR", DEFAULT_DATA_DIR))
    interval = float(os.environ.get("RSS_POLL_INTERVAL", DEFAULT_POLL_INTERVAL))
    timeout = float(os.environ.get("RSS_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT))

    sync = FeedSync(Store(data_dir), timeout=timeout)
    console = Console(sync)
    await sync.load()
    sync.start(interval)

    try:
        await command_loop(console)
    except KeyboardInterrupt:
        print("\nGoodbye!")
    finally:
        await sync.stop()


if __name__ == "__main__":
    asyncio.run(main())
