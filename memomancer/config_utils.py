"""
Utilities to populate dataclasses from user-provided configuration
(typically a Yaml file).

.. note::
    Configuration keys use hyphens, Python fields use underscores.
    The conversion happens automatically in
    :meth:`ConfigurableMixin.from_config`.
"""

import dataclasses
import os.path
import re
from datetime import timedelta
from typing import Callable, Optional

__all__ = [
    'ConfigurationError', 'ConfigurableMixin', 'check_config_keys',
    'parse_duration', 'key_dashes_to_underscores', 'get_and_apply',
    'LabelString', 'SearchDir',
]

_noneType = type(None)


class ConfigurationError(ValueError):
    """Signal configuration errors."""
    pass


class LabelString:
    """
    Subclass this to get (somewhat) type-safe label strings.
    Equality and hashing delegate to the underlying string, so labels
    can be used to look up plain string keys and vice versa.
    """

    __slots__ = ['value']

    @staticmethod
    def get_subclass(thing) -> Optional[type]:
        """
        Figure out whether a field annotation describes a label type,
        possibly wrapped in ``Optional[...]``.
        """
        if isinstance(thing, type):
            the_type = thing
        else:
            from typing import get_args
            try:
                type1, type2 = get_args(thing)
            except ValueError:
                return None
            if type2 is not _noneType:
                return None
            the_type = type1
        if not isinstance(the_type, type):
            return None
        return the_type if issubclass(the_type, LabelString) else None

    def __init__(self, value: str):
        if not isinstance(value, str):
            raise TypeError
        self.value = value

    def __str__(self):
        return self.value

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.value}')"

    def __hash__(self):
        return hash(self.value)

    def __eq__(self, other):
        return str(self) == str(other)


def key_dashes_to_underscores(config_dict):
    return {
        key.replace('-', '_'): v for key, v in config_dict.items()
    }


def check_config_keys(config_name, expected_keys, config_dict):
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    provided_keys = {key.replace('_', '-') for key in config_dict.keys()}
    expected_keys = {key.replace('_', '-') for key in expected_keys}
    unexpected_keys = provided_keys - expected_keys
    if unexpected_keys:
        raise ConfigurationError(
            f"Unexpected {'key' if len(unexpected_keys) == 1 else 'keys'} "
            f"in configuration for {config_name}: "
            f"{','.join(sorted(unexpected_keys))}."
        )


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """General configuration mixin for dataclasses"""

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook to convert raw configuration values into richer Python objects
        before the dataclass is instantiated.

        Subclasses that override this method should call
        ``super().process_entries()`` and leave keys they do not recognise
        untouched.

        :param config_dict:
            A dictionary containing configuration values (underscored keys).
        :raises ConfigurationError:
            when there is a problem processing a relevant entry.
        """
        pass

    @classmethod
    def from_config(cls, config_dict):
        """
        Instantiate the class on which it is called from a configuration
        dictionary.

        :param config_dict:
            A dictionary containing configuration values.
        :return:
            An instance of the class on which it is called.
        :raises ConfigurationError:
            when an unexpected configuration key is encountered or left
            unfilled, or when one of the values cannot be processed.
        """
        check_config_keys(
            cls.__name__, {f.name for f in dataclasses.fields(cls)},
            config_dict
        )
        config_dict = key_dashes_to_underscores(config_dict)
        cls.process_entries(config_dict)

        for f in dataclasses.fields(cls):
            label_type = LabelString.get_subclass(f.type)
            if label_type is None:
                continue
            label_str = config_dict.get(f.name, None)
            if isinstance(label_str, str):
                config_dict[f.name] = label_type(label_str)
        try:
            # noinspection PyArgumentList
            return cls(**config_dict)
        except TypeError as e:
            raise ConfigurationError(e)


DURATION_REGEX = re.compile(
    r"P(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?"
)


def parse_duration(input_str) -> timedelta:
    """
    Parse the day-time subset of ISO 8601 durations, e.g. ``PT5M`` or
    ``P1DT12H``. Year, month and week designators are not accepted.
    """
    m = DURATION_REGEX.fullmatch(input_str)
    if m is None or input_str == 'P' or input_str.endswith('T'):
        raise ValueError(f"Failed to parse duration string {input_str}")
    parts = {k: int(v) for k, v in m.groupdict().items() if v is not None}
    return timedelta(**parts)


def get_and_apply(dictionary: dict, key, function: Callable, *, default=None):
    try:
        value = dictionary[key]
    except KeyError:
        return default
    return function(value)


class SearchDir:
    root_path: str

    def __init__(self, root_path: str):
        self.root_path = os.path.abspath(root_path)

    def resolve(self, path):
        joined = os.path.join(self.root_path, path)
        abs_path = os.path.abspath(joined)
        if os.path.commonpath([self.root_path, abs_path]) != self.root_path:
            raise ConfigurationError(
                f"Path '{joined}' does not resolve to a directory "
                f"under '{self.root_path}'."
            )
        return abs_path

    def locate(self, path):
        """
        Like :meth:`resolve`, but absolute paths are taken as they are.
        Relative paths must still stay under the search directory.
        """
        if os.path.isabs(path):
            return os.path.normpath(path)
        return self.resolve(path)

    def __repr__(self):
        return f"SearchDir('{self.root_path}')"

    def __str__(self):
        return self.root_path
