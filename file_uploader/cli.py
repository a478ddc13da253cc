import click

from file_uploader.config import get_settings
from file_uploader.errors import FileServiceError, format_bytes
from file_uploader.local_store import DEFAULT_LIST_LIMIT, LocalRecordStore
from file_uploader.logging_config import setup_logging
from file_uploader.policy import UploadPolicy


@click.group()
def cli():
    """File uploader: HTTP API and local record store."""


@cli.command()
def serve():
    """Run the upload API."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run("file_uploader.main:app", host=settings.host, port=settings.port)


@cli.group()
@click.option("--db", "db_path", default=None, help="Path to the local store database.")
@click.pass_context
def local(ctx: click.Context, db_path: str | None):
    """Manage files kept in the local record store."""
    settings = get_settings()
    store = LocalRecordStore(db_path or settings.local_store_path, UploadPolicy.from_settings(settings))
    ctx.obj = run_store_command(ctx.with_resource, store)


def run_store_command(func, *args):
    try:
        return func(*args)
    except FileServiceError as exc:
        raise click.ClickException(exc.message) from exc


@local.command("add")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_obj
def add_file(store: LocalRecordStore, path: str):
    """Validate PATH and save it to the local store."""
    staged = run_store_command(store.stage_path, path)
    click.echo(f"Ready: {staged.filename} ({format_bytes(staged.size)})")
    record = run_store_command(store.persist, staged)
    click.echo(f"Saved {record.filename} as {record.id}")


@local.command("list")
@click.option("--limit", default=DEFAULT_LIST_LIMIT, show_default=True, type=click.IntRange(min=1))
@click.pass_obj
def list_files(store: LocalRecordStore, limit: int):
    """List stored files, newest first."""
    for record in run_store_command(store.list_records, limit):
        click.echo(
            f"{record.id}\t{record.filename}\t{record.content_type or 'unknown'}\t"
            f"{format_bytes(record.length)}\t{record.upload_date.isoformat()}"
        )


@local.command("get")
@click.argument("record_id")
@click.option("--out", "out_dir", default=".", type=click.Path(file_okay=False, exists=True))
@click.pass_obj
def get_file(store: LocalRecordStore, record_id: str, out_dir: str):
    """Write a stored file to OUT_DIR."""
    target = run_store_command(store.save_to, record_id, out_dir)
    click.echo(f"Downloaded to {target}")


@local.command("delete")
@click.argument("record_id")
@click.pass_obj
def delete_file(store: LocalRecordStore, record_id: str):
    """Remove a stored file."""
    run_store_command(store.delete, record_id)
    click.echo("Deleted")


if __name__ == "__main__":
    cli()
