import copy
import json
import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .config_utils import ConfigurableMixin, ConfigurationError
from .palette import ColorPalette, rgb_string

__all__ = [
    'TemplateConfig', 'PassTemplate', 'TemplateMerger', 'PassRequest',
    'DESCRIPTOR_FILENAME', 'MANIFEST_FILENAME', 'SIGNATURE_FILENAME',
    'DEFAULT_TEMPLATE_PATH',
]

logger = logging.getLogger(__name__)

DESCRIPTOR_FILENAME = 'pass.json'
MANIFEST_FILENAME = 'manifest.json'
SIGNATURE_FILENAME = 'signature'

PASS_STYLES = ('boardingPass', 'coupon', 'eventTicket', 'generic', 'storeCard')
FIELD_LISTS = (
    'headerFields', 'primaryFields', 'secondaryFields', 'auxiliaryFields',
    'backFields',
)

DEFAULT_TEMPLATE_PATH = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), 'templates', 'walletmemo.pass'
)


@dataclass(frozen=True)
class PassRequest:
    """A user's request for a pass. Immutable once received."""

    color: str
    text: Optional[str] = None
    drawing: Optional[bytes] = None


@dataclass(frozen=True)
class TemplateConfig(ConfigurableMixin):
    path: str = DEFAULT_TEMPLATE_PATH
    """Directory holding ``pass.json`` and the static files."""

    text_field: Optional[str] = None
    """
    Key of the field that receives the request text. Defaults to the first
    primary field.
    """

    identifiers_from_certificate: bool = True
    """
    Take the pass type identifier and team identifier from the subject
    of the signing certificate (UID and OU, respectively).
    """


class PassTemplate:
    """
    A pass template held in memory: the descriptor and the static files
    that go into every pass. Templates are shared by all requests, so they
    are never modified after loading.
    """

    def __init__(self, descriptor: dict, files: Mapping[str, bytes] = None,
                 text_field: Optional[str] = None):
        self._descriptor = copy.deepcopy(descriptor)
        files = dict(files or {})
        for reserved in (DESCRIPTOR_FILENAME, MANIFEST_FILENAME,
                         SIGNATURE_FILENAME):
            files.pop(reserved, None)
        self.files: Mapping[str, bytes] = MappingProxyType(files)
        self.text_field = text_field
        self.style = self._find_style()
        # fail early if the text field can't be located
        self.text_field_in(self._descriptor)

    @classmethod
    def from_directory(cls, path, text_field=None) -> 'PassTemplate':
        try:
            with open(os.path.join(path, DESCRIPTOR_FILENAME), 'rb') as inf:
                descriptor = json.loads(inf.read().decode('utf8'))
        except IOError as e:
            raise ConfigurationError(
                f"Could not read pass template in {path}: {e}"
            ) from e
        except ValueError as e:
            raise ConfigurationError(
                f"{DESCRIPTOR_FILENAME} in {path} is not valid JSON"
            ) from e

        files = {}
        for fname in sorted(os.listdir(path)):
            fpath = os.path.join(path, fname)
            if fname.startswith('.') or fname == DESCRIPTOR_FILENAME:
                continue
            if not os.path.isfile(fpath):
                logger.debug(f"Skipping non-file template entry {fname}")
                continue
            with open(fpath, 'rb') as inf:
                files[fname] = inf.read()
        logger.debug(
            f"Loaded pass template from {path} with {len(files)} static files"
        )
        return cls(descriptor, files, text_field=text_field)

    @classmethod
    def from_config(cls, config: TemplateConfig) -> 'PassTemplate':
        return cls.from_directory(config.path, text_field=config.text_field)

    @property
    def descriptor(self) -> dict:
        """A fresh copy of the template descriptor."""
        return copy.deepcopy(self._descriptor)

    def with_identifiers(self, pass_type_identifier: Optional[str] = None,
                         team_identifier: Optional[str] = None) \
            -> 'PassTemplate':
        descriptor = self.descriptor
        if pass_type_identifier:
            descriptor['passTypeIdentifier'] = pass_type_identifier
        if team_identifier:
            descriptor['teamIdentifier'] = team_identifier
        return PassTemplate(descriptor, self.files, self.text_field)

    def _find_style(self):
        styles = [s for s in PASS_STYLES if s in self._descriptor]
        if len(styles) != 1:
            raise ConfigurationError(
                f"Pass template must define exactly one pass style, "
                f"found {len(styles)}."
            )
        return styles[0]

    def text_field_in(self, descriptor) -> dict:
        style = descriptor[self.style]
        if self.text_field is None:
            try:
                return style['primaryFields'][0]
            except (KeyError, IndexError) as e:
                raise ConfigurationError(
                    "Pass template has no primary field to hold the text"
                ) from e
        for list_name in FIELD_LISTS:
            for field in style.get(list_name, ()):
                if field.get('key') == self.text_field:
                    return field
        raise ConfigurationError(
            f"Pass template has no field with key '{self.text_field}'"
        )


class TemplateMerger:
    """Apply per-request overrides to a copy of a template descriptor."""

    @staticmethod
    def merge(template: PassTemplate, request: PassRequest,
              serial_number: str, palette: ColorPalette) \
            -> Tuple[dict, Dict[str, bytes]]:
        """
        Produce the descriptor and the static files for one pass.

        :return:
            A tuple of a new descriptor and a new file dictionary. Neither
            shares mutable state with the template.
        """
        descriptor = template.descriptor
        descriptor['serialNumber'] = serial_number
        descriptor['backgroundColor'] = rgb_string(palette.background)
        descriptor['foregroundColor'] = rgb_string(palette.foreground)
        descriptor['labelColor'] = rgb_string(palette.label)
        if request.text:
            template.text_field_in(descriptor)['value'] = request.text
        return descriptor, dict(template.files)
