import sys

import click

from genretag.cli import cli
from genretag.common import GenretagExpectedError


def main() -> None:
    try:
        cli()
    except GenretagExpectedError as e:
        click.secho(f"{e.__class__.__module__}.{e.__class__.__name__}: ", fg="red", nl=False)
        click.secho(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
