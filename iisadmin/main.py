import json
from typing import List, Optional
import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from iisadmin.clients.iis import IISClient
from iisadmin.core.auth import Credentials
from iisadmin.core.config import DEFAULT_CONFIG_PATH, load_settings
from iisadmin.core.errors import IISAdminError
from iisadmin.core.session import build_http_session, establish_session
from iisadmin.core.utils import setup_logging

app = typer.Typer(
    help="IIS Administration API client",
    no_args_is_help=False,
    add_completion=False,
    rich_markup_mode=None,
)
pools_app = typer.Typer(help="Application pools", add_completion=False)
sites_app = typer.Typer(help="Websites", add_completion=False)
files_app = typer.Typer(help="Files and directories", add_completion=False)
certs_app = typer.Typer(help="Certificates", add_completion=False)
app.add_typer(pools_app, name="pools")
app.add_typer(sites_app, name="sites")
app.add_typer(files_app, name="files")
app.add_typer(certs_app, name="certs")

console = Console()


@app.callback(invoke_without_command=True)
def root(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="IIS Administration API URL (overrides IIS_HOST)"),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="YAML file with retry settings"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    if ctx.invoked_subcommand is None:
        typer.echo("Specify a subcommand, e.g. iisadmin pools list")
        raise typer.Exit(2)
    try:
        settings = load_settings(config_path=config, host=host)
    except IISAdminError as e:
        fail(e)
    setup_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


def fail(e: IISAdminError):
    console.print(f"[red]{e.__class__.__name__}[/red]: {escape(e.message)}")
    raise typer.Exit(1)


def get_client(ctx: typer.Context) -> IISClient:
    try:
        return establish_session(ctx.obj)
    except IISAdminError as e:
        fail(e)


def parse_binding(raw: str) -> dict:
    """protocol:ip:port[:hostname], e.g. http:*:80:www.example.com"""
    parts = raw.split(":")
    if len(parts) < 3 or not parts[2].isdigit():
        raise typer.BadParameter(f"Binding must look like protocol:ip:port[:hostname], got {raw!r}")
    return {
        "protocol": parts[0],
        "ip_address": parts[1],
        "port": int(parts[2]),
        "hostname": ":".join(parts[3:]),
    }


def refs_table(title: str, refs, *columns: str) -> Table:
    tbl = Table(title=title, box=box.SIMPLE_HEAVY)
    tbl.add_column("ID", style="bold")
    tbl.add_column("Name")
    for c in columns:
        tbl.add_column(c.replace("_", " ").capitalize())
    for r in refs:
        tbl.add_row(r.remote_id, r.name, *[str(r.data.get(c, "")) for c in columns])
    return tbl


@app.command()
def token(
    ctx: typer.Context,
    expires_on: str = typer.Option("", help="Expiry date for the key; empty means it never expires"),
):
    """Generate an API access token from the NTLM credentials."""
    settings = ctx.obj
    if not settings.host or not settings.has_ntlm:
        typer.echo("IIS_HOST and IIS_NTLM_USERNAME/IIS_NTLM_PASSWORD are required", err=True)
        raise typer.Exit(2)
    client = IISClient(settings.host, Credentials(), session=build_http_session(settings), policy=settings.retry)
    try:
        value = client.acquire_token(settings.ntlm_username, settings.ntlm_password, settings.ntlm_domain or None, expires_on)
    except IISAdminError as e:
        fail(e)
    typer.echo(value)


@pools_app.command("list")
def pools_list(ctx: typer.Context):
    client = get_client(ctx)
    try:
        pools = client.list_app_pools()
    except IISAdminError as e:
        fail(e)
    console.print(refs_table("Application pools", pools, "status"))


@pools_app.command("create")
def pools_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pool name"),
    runtime: str = typer.Option("", "--runtime", help="Managed runtime version, e.g. v4.0"),
):
    client = get_client(ctx)
    try:
        ref = client.create_app_pool(name, runtime)
    except IISAdminError as e:
        fail(e)
    console.print(f"[green]Application pool ready[/green]: {ref.name} (id={ref.remote_id})")


@sites_app.command("list")
def sites_list(ctx: typer.Context):
    client = get_client(ctx)
    try:
        sites = client.list_websites()
    except IISAdminError as e:
        fail(e)
    console.print(refs_table("Websites", sites, "status", "physical_path"))


@sites_app.command("create")
def sites_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Site name"),
    physical_path: str = typer.Argument(..., help="Site root, e.g. C:\\inetpub\\site"),
    pool: str = typer.Option(..., "--pool", help="Application pool id"),
    binding: List[str] = typer.Option(None, "--binding", "-b", help="protocol:ip:port[:hostname] (repeatable)"),
):
    bindings = [parse_binding(b) for b in (binding or ["http:*:80"])]
    client = get_client(ctx)
    try:
        ref = client.create_website(name, physical_path, bindings, pool)
    except IISAdminError as e:
        fail(e)
    console.print(f"[green]Website ready[/green]: {ref.name} (id={ref.remote_id})")


@files_app.command("list")
def files_list(
    ctx: typer.Context,
    parent: str = typer.Option("", "--parent", help="Parent directory id; roots when omitted"),
):
    client = get_client(ctx)
    try:
        files = client.list_files(parent)
    except IISAdminError as e:
        fail(e)
    console.print(refs_table("Files", files, "type", "physical_path"))


@files_app.command("mkdir")
def files_mkdir(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    parent: str = typer.Option(..., "--parent", help="Parent directory id"),
):
    client = get_client(ctx)
    try:
        ref = client.create_directory(name, parent)
    except IISAdminError as e:
        fail(e)
    console.print(f"[green]Directory ready[/green]: {ref.data.get('physical_path') or ref.name} (id={ref.remote_id})")


@files_app.command("find")
def files_find(ctx: typer.Context, path: str = typer.Argument(..., help="File id or physical path")):
    client = get_client(ctx)
    try:
        ref = client.find_file(path)
    except IISAdminError as e:
        fail(e)
    if ref is None:
        console.print(f"[yellow]Not found[/yellow]: {path}")
        raise typer.Exit(1)
    console.print_json(json.dumps(ref.data))


@certs_app.command("list")
def certs_list(ctx: typer.Context):
    client = get_client(ctx)
    try:
        certs = client.list_certificates()
    except IISAdminError as e:
        fail(e)
    tbl = Table(title="Certificates", box=box.SIMPLE_HEAVY)
    for col in ("Alias", "Subject", "Issued by", "Thumbprint"):
        tbl.add_column(col)
    for c in certs:
        tbl.add_row(c.get("alias", ""), c.get("subject", ""), c.get("issued_by", ""), c.get("thumbprint", ""))
    console.print(tbl)


if __name__ == "__main__":
    app()
