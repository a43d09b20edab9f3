"""
Typed configuration sections.

Options are declared as :class:`ConfigItem` descriptors on :class:`ConfigSection` subclasses.  Values are converted
by the item's ``type`` when they are set, and an item that was never set reads as its default.  A section may hold
other sections via :class:`NestedSection`, and updating the outer section merges into the nested ones.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Generic, Type, TypeVar, Union, overload

__all__ = ['ConfigItem', 'NestedSection', 'ConfigSection', 'ConfigException', 'InvalidConfigError']

T = TypeVar('T')
ConfigMap = Union[Mapping[str, Any], 'ConfigSection', None]


class ConfigItem(Generic[T]):
    __slots__ = ('name', 'default', 'type')

    def __init__(self, default: T, type: Callable[[Any], T] = None):  # noqa
        self.default = default
        self.type = type

    def __set_name__(self, owner: Type[ConfigSection], name: str):
        self.name = name

    @overload
    def __get__(self, instance: None, owner: Type[ConfigSection]) -> ConfigItem[T]:
        ...

    @overload
    def __get__(self, instance: ConfigSection, owner: Type[ConfigSection]) -> T:
        ...

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.__dict__.get(self.name, self.default)

    def __set__(self, instance: ConfigSection, value: T):
        if self.type is not None:
            try:
                value = self.type(value)
            except (TypeError, ValueError) as e:
                raise InvalidConfigError(f'Invalid value={value!r} for config item={self.name!r}: {e}') from e
        instance.__dict__[self.name] = value


class NestedSection(ConfigItem):
    """A section within a section.  Each instance of the outer section gets its own instance of the nested one."""

    __slots__ = ()

    def __init__(self, section_cls: Type[ConfigSection]):
        super().__init__(None, section_cls)

    def __get__(self, instance, owner):
        if instance is None:
            return self
        try:
            return instance.__dict__[self.name]
        except KeyError:
            instance.__dict__[self.name] = section = self.type()
            return section


class ConfigSection:
    _config_items_: dict[str, ConfigItem] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        items = {}
        for klass in reversed(cls.__mro__):
            items.update((name, val) for name, val in vars(klass).items() if isinstance(val, ConfigItem))
        cls._config_items_ = items

    def __init__(self, config: ConfigMap = None, **kwargs):
        self.update(config, **kwargs)

    def update(self, config: ConfigMap = None, **kwargs):
        """
        Update this section with the given values.  Values for nested sections are merged into the existing nested
        section, so any of its values that are not provided here are kept.

        :param config: A mapping (or a section of the same type) containing values for this section
        :param kwargs: Additional values for this section
        :raises InvalidConfigError: If a key does not match a :class:`ConfigItem` in this section, or if a value could
          not be converted to its item's type
        """
        if isinstance(config, ConfigSection):
            config = config.__dict__
        elif config is not None and not isinstance(config, Mapping):
            raise InvalidConfigError(f'Invalid configuration for {self.__class__.__name__}: {config!r}')

        values = {**config, **kwargs} if config else kwargs
        if bad := values.keys() - self._config_items_.keys():
            raise InvalidConfigError(f'Invalid configuration - unsupported options: {", ".join(sorted(bad))}')

        for key, val in values.items():
            if isinstance(self._config_items_[key], NestedSection):
                getattr(self, key).update(val)
            else:
                setattr(self, key, val)


# region Exceptions


class ConfigException(Exception):
    """Base exception for config-related errors"""


class InvalidConfigError(ConfigException):
    """Raised when invalid config items are provided when initializing or updating a ConfigSection"""


# endregion
