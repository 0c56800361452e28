import dataclasses
import logging
import os
import os.path
import random
from typing import Mapping, Optional

import yaml

from .config_utils import (
    ConfigurationError,
    SearchDir,
    check_config_keys,
    get_and_apply,
    key_dashes_to_underscores,
    parse_duration,
)
from .credentials import CredentialConfig, CredentialStore
from .generator import (
    DEFAULT_MAX_DRAWING_BYTES,
    DEFAULT_MAX_TEXT_LENGTH,
    PassGenerator,
)
from .palette import PaletteTable
from .pending import DEFAULT_TTL, PendingPassStore
from .signing import PassSigner
from .synthesis import DEFAULT_ASSET_SPECS, AssetSpec, AssetSynthesizer
from .template import PassTemplate, TemplateConfig

__all__ = ['MemomancerConfig']

logger = logging.getLogger(__name__)

CONFIG_KEYS = (
    'credentials', 'template', 'palettes', 'assets', 'pending',
    'strict-drawing', 'max-text-length', 'max-drawing-bytes',
    'min-drawing-bytes', 'logo-text', 'font-path', 'signature-digest',
)


def _asset_specs(config) -> dict:
    specs = dict(DEFAULT_ASSET_SPECS)
    for kind, spec_cfg in config.items():
        try:
            base = dataclasses.asdict(specs[kind])
        except KeyError:
            base = {}
        base.update(key_dashes_to_underscores(spec_cfg or {}))
        base['kind'] = kind
        specs[kind] = AssetSpec.from_config(base)
    return specs


def _identifiers_from_certificate(cert):
    subject = cert.subject.native
    pass_type_id = subject.get('user_id', None)
    team_id = subject.get('organizational_unit_name', None)
    if isinstance(team_id, list):
        team_id = team_id[0]
    return pass_type_id, team_id


class MemomancerConfig:
    """
    Helper class to interpret & manage Memomancer configuration information.

    Relative paths in the configuration are resolved against the directory
    of the configuration file. Credential settings can be overridden through
    environment variables; see :class:`.CredentialConfig`.
    """

    @classmethod
    def from_yaml(cls, yaml_str, config_search_dir='.',
                  env: Mapping[str, str] = None) -> 'MemomancerConfig':
        config_dict = yaml.safe_load(yaml_str) or {}
        return MemomancerConfig(
            config_dict, config_search_dir=config_search_dir, env=env
        )

    @classmethod
    def from_file(cls, cfg_path, config_search_dir=None,
                  env: Mapping[str, str] = None) -> 'MemomancerConfig':
        config_search_dir = config_search_dir or os.path.dirname(
            os.path.abspath(cfg_path)
        )
        with open(cfg_path, 'r') as inf:
            config_dict = yaml.safe_load(inf) or {}
        return MemomancerConfig(
            config_dict, config_search_dir=config_search_dir, env=env
        )

    def __init__(self, config, config_search_dir='.',
                 env: Optional[Mapping[str, str]] = None):
        check_config_keys('MemomancerConfig', CONFIG_KEYS, config)
        search_dir = SearchDir(config_search_dir)
        env = os.environ if env is None else env

        self.credential_config = CredentialConfig.from_config(
            config.get('credentials', None) or {}
        ).resolve_paths(search_dir).with_environment(env)

        template_cfg = dict(config.get('template', None) or {})
        if 'path' in template_cfg:
            template_cfg['path'] = search_dir.locate(template_cfg['path'])
        self.template_config = TemplateConfig.from_config(template_cfg)

        self.palettes = PaletteTable.from_config(
            config.get('palettes', None) or {}
        )
        self.asset_specs = _asset_specs(config.get('assets', None) or {})

        pending_cfg = config.get('pending', None) or {}
        check_config_keys('pending', ('ttl',), pending_cfg)
        try:
            self.pending_ttl = parse_duration(pending_cfg['ttl'])
        except KeyError:
            self.pending_ttl = DEFAULT_TTL
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"pending.ttl must be an ISO 8601 duration: {e}"
            ) from e

        self.strict_drawing = config.get('strict-drawing', False)
        if not isinstance(self.strict_drawing, bool):
            raise ConfigurationError(
                f"strict-drawing must be true or false, not "
                f"{self.strict_drawing!r}"
            )
        self.max_text_length = get_and_apply(
            config, 'max-text-length', int, default=DEFAULT_MAX_TEXT_LENGTH
        )
        self.max_drawing_bytes = get_and_apply(
            config, 'max-drawing-bytes', int,
            default=DEFAULT_MAX_DRAWING_BYTES
        )
        self.min_drawing_bytes = get_and_apply(
            config, 'min-drawing-bytes', int, default=1024
        )
        self.logo_text = config.get('logo-text', 'Wallet Memo')
        self.font_path = get_and_apply(config, 'font-path', search_dir.locate)
        self.signature_digest = config.get('signature-digest', 'sha256')

    @property
    def credentials_available(self) -> bool:
        return CredentialStore.check(self.credential_config)

    def load_credentials(self) -> CredentialStore:
        return CredentialStore.load(self.credential_config)

    def load_template(self, credentials: CredentialStore = None) \
            -> PassTemplate:
        template = PassTemplate.from_config(self.template_config)
        if credentials is not None and \
                self.template_config.identifiers_from_certificate:
            pass_type_id, team_id = _identifiers_from_certificate(
                credentials.bundle.signer_cert
            )
            template = template.with_identifiers(pass_type_id, team_id)
        return template

    def build_generator(self, credentials: CredentialStore = None,
                        rng: random.Random = None, signing_time=None) \
            -> PassGenerator:
        """
        Wire up a pass generator. Credentials are loaded from the
        configuration unless passed in.
        """
        credentials = credentials or self.load_credentials()
        synthesizer = AssetSynthesizer(
            specs=self.asset_specs, rng=rng,
            min_drawing_bytes=self.min_drawing_bytes,
            logo_text=self.logo_text, font_path=self.font_path,
        )
        return PassGenerator(
            credentials=credentials,
            template=self.load_template(credentials),
            palettes=self.palettes,
            synthesizer=synthesizer,
            pending_store=PendingPassStore(ttl=self.pending_ttl),
            signer=PassSigner(
                credentials.bundle, md_algorithm=self.signature_digest,
                fixed_dt=signing_time
            ),
            strict_drawing=self.strict_drawing,
            max_text_length=self.max_text_length,
            max_drawing_bytes=self.max_drawing_bytes,
        )
