import os
import sys
from contextlib import contextmanager
from zipfile import BadZipFile

from dateutil.parser import parse as parse_dt

import click
import tzlocal
import logging

from .config import MemomancerConfig
from .config_utils import ConfigurationError
from .errors import CredentialError, MemomancerError
from .manifest import Manifest
from .packaging import BundlePackager
from .template import MANIFEST_FILENAME, SIGNATURE_FILENAME, PassRequest
from .version import __version__

DEFAULT_CONFIG_FILE = 'memomancer.yml'
logger = logging.getLogger(__name__)


def _log_config():
    _logger = logging.getLogger('memomancer')
    _logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    handler.setFormatter(formatter)
    _logger.addHandler(handler)


@contextmanager
def exception_manager():
    msg = exc = None
    try:
        yield
    except click.ClickException:
        raise
    except ConfigurationError as e:
        msg = f"Configuration problem: {str(e)}"
        exc = e
    except CredentialError as e:
        msg = f"Credential problem: {str(e)}"
        exc = e
    except MemomancerError as e:
        msg = f"Pass generation problem: {str(e)}"
        exc = e

    if exc is not None:
        logger.error(msg, exc_info=exc)
        raise click.ClickException(msg)


def _lazy_cfg(config):
    if config is None and not os.path.isfile(DEFAULT_CONFIG_FILE):
        # no config file at all: defaults, credentials from the environment
        cfg = MemomancerConfig({})
    else:
        config = config or DEFAULT_CONFIG_FILE
        try:
            cfg = MemomancerConfig.from_file(config)
        except IOError as e:
            raise click.ClickException(
                f"I/O Error processing config from {config}: {e}",
            ) from e

    while True:
        yield cfg


@click.group()
@click.version_option(prog_name='memomancer', version=__version__)
@click.option('--config',
              help=('YAML file to load configuration from '
                    f'[default: {DEFAULT_CONFIG_FILE}, if present]'),
              required=False, type=click.Path(readable=True, dir_okay=False))
@click.pass_context
@exception_manager()
def cli(ctx, config):
    _log_config()
    ctx.ensure_object(dict)
    ctx.obj['config'] = _lazy_cfg(config)


@cli.command(help='produce a signed pass')
@click.pass_context
@click.argument('output', type=click.Path(writable=True, dir_okay=False),
                required=False)
@click.option('--text', type=str, help='text to put on the pass')
@click.option('--color', type=str, default='blue', show_default=True,
              help='colour palette of the pass')
@click.option('--drawing', type=click.Path(readable=True, dir_okay=False),
              help='image file to put on the pass background')
@click.option('--at-time', required=False, type=str,
              help='ISO 8601 timestamp to use as signing time [default: now]')
@click.option('--ignore-tty', type=bool, is_flag=True,
              help='never try to prevent binary data from being written '
                   'to stdout')
@exception_manager()
def conjure(ctx, output, text, color, drawing, at_time, ignore_tty):
    cfg: MemomancerConfig = next(ctx.obj['config'])
    if output is None and not ignore_tty and sys.stdout.isatty():
        raise click.ClickException(
            "Refusing to write binary output to a TTY. Pass --ignore-tty if "
            "you really want to ignore this check."
        )
    signing_time = None
    if at_time is not None:
        signing_time = parse_dt(at_time)
        if signing_time.tzinfo is None:
            signing_time = signing_time.replace(
                tzinfo=tzlocal.get_localzone()
            )
    drawing_data = None
    if drawing is not None:
        with open(drawing, 'rb') as inf:
            drawing_data = inf.read()

    generator = cfg.build_generator(signing_time=signing_time)
    data = generator.generate(
        PassRequest(color=color, text=text, drawing=drawing_data)
    )
    if output is None:
        sys.stdout.buffer.write(data)
    else:
        with open(output, 'wb') as outf:
            outf.write(data)


@cli.command(help='list the contents of a pass and check its manifest')
@click.argument('pkpass', type=click.Path(readable=True, dir_okay=False))
@exception_manager()
def inspect(pkpass):
    with open(pkpass, 'rb') as inf:
        try:
            entries = BundlePackager.unpack(inf.read())
        except BadZipFile as e:
            raise click.ClickException(
                f"{pkpass} is not a pass bundle: {e}"
            ) from e

    for name in sorted(entries):
        click.echo(f'{name:<24} {len(entries[name]):>10}')

    try:
        manifest = Manifest.load(entries[MANIFEST_FILENAME])
    except KeyError:
        raise click.ClickException(f"{pkpass} has no manifest")
    except ValueError as e:
        raise click.ClickException(f"Malformed manifest: {e}") from e
    if SIGNATURE_FILENAME not in entries:
        raise click.ClickException(f"{pkpass} is not signed")
    if not manifest.verify(entries):
        raise click.ClickException("Manifest does not match pass contents")
    click.echo(f"Manifest OK ({len(manifest)} files)")


@cli.command(help='check that the signing credentials are usable')
@click.pass_context
@exception_manager()
def check(ctx):
    cfg: MemomancerConfig = next(ctx.obj['config'])
    if not cfg.credentials_available:
        raise click.ClickException(
            "Signing credentials are missing; see the log for details."
        )
    store = cfg.load_credentials()
    subject = store.bundle.signer_cert.subject.human_friendly
    click.echo(f"Signing certificate: {subject}")
    click.echo(
        f"Intermediate: {store.bundle.wwdr_cert.subject.human_friendly}"
    )


@cli.command(help='run the Postmaster behind a development server')
@click.option('--port', help='port to listen on',
              required=False, type=int, default=9000, show_default=True)
@click.option('--wsgi-prefix', required=False, type=str,
              help='WSGI prefix under which to mount the application')
@click.pass_context
@exception_manager()
def animate(ctx, port, wsgi_prefix):
    try:
        from .integrations.postmaster import Postmaster
        from werkzeug.middleware.dispatcher import DispatcherMiddleware
        from werkzeug.exceptions import NotFound
    except ImportError as e:
        raise click.ClickException(
            "'animate' requires additional dependencies. "
            "Re-run setup with the [web-api] extension set, or install "
            "Werkzeug manually."
        ) from e
    cfg: MemomancerConfig = next(ctx.obj['config'])
    from werkzeug.serving import run_simple

    # credentials are loaded once, before the first request comes in
    app = Postmaster(cfg.build_generator())
    if wsgi_prefix:
        app = DispatcherMiddleware(NotFound(), {wsgi_prefix: app})
    run_simple('127.0.0.1', port, app, threaded=True)
