import base64
import binascii
import json
import logging
import os
import re
import threading
from typing import Callable, Dict, Optional

from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response

from memomancer.config import MemomancerConfig
from memomancer.errors import (
    ExpiredError,
    MemomancerError,
    NotFoundError,
    ValidationError,
)
from memomancer.generator import PassGenerator
from memomancer.packaging import PKPASS_FILENAME, PKPASS_MIME_TYPE
from memomancer.template import PassRequest

logger = logging.getLogger(__name__)

MAX_REQUEST_BYTES = 10 * 1024 * 1024
DEFAULT_COLOR = 'blue'

DATA_URL_REGEX = re.compile(
    r'data:(?P<mime>[\w/+.-]*)(?P<params>(?:;[\w=.+-]+)*?)(?P<b64>;base64)?,'
    r'(?P<data>.*)', re.DOTALL
)


class PostmasterRequest(Request):
    max_content_length = MAX_REQUEST_BYTES


def drawing_from_data_url(data_url: Optional[str]) -> Optional[bytes]:
    """
    Decode a drawing submitted as a base64 data URL (as produced by a
    browser canvas).

    :raises ValidationError:
        if the value is not a base64 data URL.
    """
    if not data_url:
        return None
    if not isinstance(data_url, str):
        raise ValidationError("drawingDataUrl must be a string")
    m = DATA_URL_REGEX.fullmatch(data_url)
    if m is None or m.group('b64') is None:
        raise ValidationError("drawingDataUrl must be a base64 data URL")
    try:
        return base64.b64decode(m.group('data'), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("drawingDataUrl is not valid base64") from e


def pass_request_from_json(payload) -> PassRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return PassRequest(
        color=payload.get('color', None) or DEFAULT_COLOR,
        text=payload.get('text', None),
        drawing=drawing_from_data_url(payload.get('drawingDataUrl', None)),
    )


def _json_response(payload, status=200):
    return Response(
        json.dumps(payload), status=status, mimetype='application/json'
    )


def service_rules():
    return [
        Rule('/api/generate-pass', endpoint='generate', methods=('POST',)),
        Rule('/api/prepare-pass', endpoint='prepare', methods=('POST',)),
        Rule('/api/pass/<token>', endpoint='retrieve', methods=('GET',)),
        Rule('/api/health', endpoint='health', methods=('GET',)),
    ]


class Postmaster:
    """
    WSGI application that hands out passes.

    :param generator:
        The pass generator, with its credentials already loaded.
    """

    def __init__(self, generator: PassGenerator):
        self.generator = generator
        self.url_map = Map(service_rules())
        self._handlers: Dict[str, Callable] = {
            'generate': self.serve_generate,
            'prepare': self.serve_prepare,
            'retrieve': self.serve_retrieve,
            'health': self.serve_health,
        }

    @staticmethod
    def _pass_response(data: bytes):
        cd_header = f'attachment; filename={PKPASS_FILENAME}'
        return Response(
            data, mimetype=PKPASS_MIME_TYPE,
            headers={'Content-Disposition': cd_header}
        )

    @staticmethod
    def _read_pass_request(request: Request) -> PassRequest:
        if (request.content_length or 0) > MAX_REQUEST_BYTES:
            raise RequestEntityTooLarge()
        payload = request.get_json(force=True, silent=True)
        return pass_request_from_json(payload)

    def serve_generate(self, request: Request):
        pass_request = self._read_pass_request(request)
        return self._pass_response(self.generator.generate(pass_request))

    def serve_prepare(self, request: Request):
        pass_request = self._read_pass_request(request)
        token = self.generator.prepare(pass_request)
        url = self.url_map.bind_to_environ(request.environ).build(
            'retrieve', {'token': token}
        )
        return _json_response({'token': token, 'url': url})

    def serve_retrieve(self, _request: Request, *, token: str):
        return self._pass_response(self.generator.retrieve(token))

    def serve_health(self, _request: Request):
        subject = self.generator.credentials.bundle.signer_cert.subject
        return _json_response({
            'status': 'ready',
            'message': 'Server ready to generate passes',
            'signer': subject.human_friendly,
        })

    def dispatch(self, request: Request):
        adapter = self.url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            handler = self._handlers[endpoint]
            return handler(request, **values)
        except ValidationError as e:
            logger.info(f"Rejected pass request: {e}")
            return _json_response({'error': str(e)}, status=400)
        except ExpiredError as e:
            return _json_response({'error': str(e)}, status=410)
        except NotFoundError as e:
            return _json_response({'error': str(e)}, status=404)
        except MemomancerError as e:
            logger.error(f"Error generating pass: {e}", exc_info=e)
            return _json_response({'error': 'Could not generate pass'}, 500)
        except HTTPException as e:
            return e

    def __call__(self, environ, start_response):
        request = PostmasterRequest(environ)
        resp = self.dispatch(request)
        return resp(environ, start_response)


class LazyPostmaster:
    """
    Postmaster that loads its configuration on the first request.
    The configuration file is taken from ``MEMOMANCER_CONFIG``; without it,
    the defaults apply and credentials come from the environment.
    """

    def __init__(self):
        self.postmaster = None
        self._lock = threading.Lock()

    def _load(self):
        with self._lock:
            if self.postmaster is not None:
                return
            cfg_file = os.environ.get('MEMOMANCER_CONFIG', None)
            if cfg_file:
                cfg = MemomancerConfig.from_file(cfg_file)
            else:
                cfg = MemomancerConfig({})
            self.postmaster = Postmaster(cfg.build_generator())

    def __call__(self, environ, start_response):
        self._load()
        return self.postmaster(environ, start_response)


app = LazyPostmaster()
