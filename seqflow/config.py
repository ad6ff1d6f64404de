"""
INI configuration with nested sections.

Section names may be dotted to group related sections, such as one section
per executor:

.. code-block:: ini

    [executors.default]
    type = local

    [executors.docker]
    type = docker
    image = ubuntu:22.04

Here `config["executors"]` is a dict of the two sections, keyed by `default`
and `docker`.
"""

import os
from configparser import ConfigParser, ExtendedInterpolation, SectionProxy
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple, Union


class ConfigError(Exception):
    pass


class EnvInterpolation(ExtendedInterpolation):
    """
    `${name}` interpolation that falls back to environment variables.

    .. code-block:: ini

        [scheduler]
        scratch = ${SCRATCH}/seqflow
    """

    def before_get(self, parser, section, option, value, defaults):
        defaults = {**defaults, **os.environ}
        return super().before_get(parser, section, option, value, defaults)


class CaseSensitiveConfigParser(ConfigParser):
    def optionxform(self, optionstr):
        return optionstr


class Config:
    """
    A ConfigParser whose dotted section names are exposed as nested dicts.
    """

    def __init__(self, config_dict: Optional[dict] = None):
        self.parser = CaseSensitiveConfigParser(interpolation=EnvInterpolation())
        self._sections: Dict[str, Any] = {}
        if config_dict:
            self.read_dict(config_dict)

    def read_string(self, string: str) -> None:
        self.parser.read_string(string)
        self._sections = self._nest_sections()

    def read_path(self, filename: str) -> None:
        with open(filename) as infile:
            self.parser.read_file(infile)
        self._sections = self._nest_sections()

    def read_dict(self, config_dict: dict) -> None:
        self.parser.read_dict(config_dict)
        self._sections = self._nest_sections()

    def _nest_sections(self) -> Dict[str, Any]:
        nested: Dict[str, Any] = {}
        for name in self.parser.sections():
            *parents, leaf = name.split(".")
            group = nested
            for part in parents:
                group = group.setdefault(part, {})
                if isinstance(group, SectionProxy):
                    raise ConfigError(
                        f"Config section [{part}] cannot also be a group of sections ([{name}])."
                    )
            if isinstance(group.get(leaf), dict):
                raise ConfigError(
                    f"Config section [{name}] cannot also be a group of sections."
                )
            group[leaf] = self.parser[name]
        return nested

    def get(self, key: str, default: Any = None) -> Any:
        return self._sections.get(key, default)

    def __getitem__(self, section_name: str) -> Any:
        return self._sections[section_name]

    def __setitem__(self, section_name: str, section: "Section") -> None:
        self._sections[section_name] = section

    def keys(self) -> Iterable[str]:
        return self._sections.keys()

    def items(self):
        return self._sections.items()

    def iter_sections(self) -> Iterator[Tuple[str, SectionProxy]]:
        """
        Iterate through the leaf sections as (dotted name, section) pairs.
        """
        stack = [("", self._sections)]
        while stack:
            prefix, group = stack.pop()
            for key, value in group.items():
                name = f"{prefix}.{key}" if prefix else key
                if isinstance(value, dict):
                    stack.append((name, value))
                else:
                    yield name, value

    def get_config_dict(self) -> Dict[str, Dict[str, str]]:
        """
        Returns a dict of dotted section names to options, from which the
        Config can be rebuilt with `Config(config_dict)`.
        """
        return {name: dict(section.items()) for name, section in self.iter_sections()}


Section = Union[dict, SectionProxy, Config]


def create_config_section(config_dict: Optional[dict] = None) -> SectionProxy:
    """
    Create a standalone section, e.g. for defaults.
    """
    return Config({"section": config_dict or {}})["section"]
