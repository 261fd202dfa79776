import logging

from spendlog import config
from spendlog.cli import run
from spendlog.storage import Repository, Store


def main():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    config.ensure_directories()
    run(Repository(Store(config.DATA_DIR)))


if __name__ == "__main__":
    main()
