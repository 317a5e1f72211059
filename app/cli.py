import click
from flask.cli import AppGroup

from app.errors import StockOpnameError
from app.opname_io import EXPORT_FORMATS, export_rows, import_rows, read_upload, render_export

opname_cli = AppGroup("opname", help="Utilitas stock opname dari command line.")


@opname_cli.command("export")
@click.argument("session_id", type=int)
@click.option("--format", "fmt", type=click.Choice(sorted(EXPORT_FORMATS)), default="csv")
@click.option("--output", "-o", type=click.Path(dir_okay=False, writable=True), default=None)
def export_command(session_id, fmt, output):
    """Export item sesi ke CSV/XLSX (default ke stdout untuk CSV)."""
    try:
        content, _mimetype, _extension = render_export(export_rows(session_id), fmt)
    except StockOpnameError as exc:
        raise click.ClickException(exc.message) from exc
    if output:
        with open(output, "wb") as fh:
            fh.write(content)
        click.echo(f"Export tersimpan di {output}")
    elif fmt == "csv":
        click.echo(content.decode("utf-8"), nl=False)
    else:
        raise click.UsageError("Format xlsx membutuhkan --output.")


@opname_cli.command("import")
@click.argument("session_id", type=int)
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def import_command(session_id, path):
    """Import item dari file CSV/XLSX ke sesi DRAFT."""
    try:
        with open(path, "rb") as fh:
            rows = read_upload(path, fh)
        result = import_rows(session_id, rows)
    except StockOpnameError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f"Diterima: {len(result.accepted)}, ditolak: {len(result.rejected)}")
    for rejected in result.rejected:
        click.echo(f"  baris {rejected['line']}: {rejected['reason']}")
