"""URL transformation strategies (image proxies) and their ordered registry."""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urlsplit

from ..utils import is_http_url
from .models import DuplicateStrategyError, StrategyNotFoundError

# Same unreserved set as JavaScript's encodeURIComponent
_COMPONENT_SAFE = "-_.!~*'()"

_IMAGE_EXT_RE = re.compile(r'\.(jpg|jpeg|tiff|png|gif)($|[?&])', re.IGNORECASE)


def encode_component(value: str) -> str:
    return quote(value, safe=_COMPONENT_SAFE)


class TransformStrategy(ABC):
    """Base class for URL transformation strategies.

    A strategy rewrites a resource URL into an alternate URL that is hopefully
    not blocked. Strategies are stateless; ``apply`` must be a pure function
    that leaves untransformable or already-transformed URLs unchanged.
    """

    name: str = ''
    tag: Any = None

    def __setattr__(self, key, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    @abstractmethod
    def matches(self, url: str) -> bool:
        """Return True if ``url`` is already in this strategy's produced form."""

    @abstractmethod
    def _transform(self, url: str) -> str:
        """Transform a URL known to be transformable."""

    def reverse(self, url: str) -> str:
        """Best-effort inverse of ``apply``; returns ``url`` unchanged if not reversible."""
        return url

    def can_apply(self, url: str) -> bool:
        return is_http_url(url) and not self.matches(url)

    def apply(self, url: str) -> str:
        """Produce a transformed candidate URL; anything untransformable comes back as given."""
        if not url:
            return url
        stripped = url.strip()
        if not self.can_apply(stripped):
            return url
        return self._transform(stripped)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class PrefixStrategy(TransformStrategy):
    """Mirror-style strategy that prepends a fixed prefix to the URL.

    With ``strip_scheme`` the URL's scheme is dropped first, so
    ``http://x/img.png`` becomes ``<prefix>x/img.png``; with ``encode`` the
    whole URL is percent-encoded as a single path or query component.
    """

    def __init__(self, name: str, prefix: str, tag: Any = None,
                 strip_scheme: bool = True, encode: bool = False):
        if not name:
            raise ValueError("strategy name must not be empty")
        if not prefix:
            raise ValueError("strategy prefix must not be empty")
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'tag', tag)
        object.__setattr__(self, 'prefix', prefix)
        object.__setattr__(self, 'strip_scheme', strip_scheme and not encode)
        object.__setattr__(self, 'encode', encode)

    def matches(self, url: str) -> bool:
        return bool(url) and url.startswith(self.prefix)

    def _transform(self, url: str) -> str:
        if self.encode:
            return self.prefix + encode_component(url)
        if self.strip_scheme:
            return self.prefix + re.sub(r'^https?://', '', url, flags=re.IGNORECASE)
        return self.prefix + url

    def reverse(self, url: str) -> str:
        if not self.matches(url):
            return url
        rest = url[len(self.prefix):]
        if self.encode:
            return unquote(rest)
        if self.strip_scheme:
            # the original scheme is lost; http is the best guess
            return 'http://' + rest
        return rest


class FileStack(TransformStrategy):
    """Filestack processing API used as a pass-through image proxy."""

    name = 'FileStack'
    tag = '#acb300'
    BASE_URL = 'https://process.filestackapi.com/AhTgLagciQByzXpFGRI0Az/'
    _PATTERN = re.compile(r'https://process\.filestackapi\.com/.+/')

    def matches(self, url: str) -> bool:
        return bool(url) and bool(self._PATTERN.search(url))

    def _transform(self, url: str) -> str:
        return self.BASE_URL + encode_component(url)

    def reverse(self, url: str) -> str:
        if not url or not url.startswith(self.BASE_URL):
            return url
        return unquote(url[len(self.BASE_URL):])


class SteemitImages(TransformStrategy):
    """Steemit image proxy; only proxies URLs with a known image extension."""

    name = 'SteemitImages'
    tag = '#0074B3'
    BASE_URL = 'https://steemitimages.com/0x0/'
    _PATTERN = re.compile(r'https://steemitimages\.com/(p|0x0)/')

    def matches(self, url: str) -> bool:
        return bool(url) and bool(self._PATTERN.search(url))

    def can_apply(self, url: str) -> bool:
        return super().can_apply(url) and bool(_IMAGE_EXT_RE.search(url))

    def _transform(self, url: str) -> str:
        return self.BASE_URL + url

    def reverse(self, url: str) -> str:
        # Only works for the 0x0 form; /p/ URLs carry an opaque hash
        if not self.matches(url):
            return url
        return url.replace(self.BASE_URL, '', 1)


class DDG(TransformStrategy):
    """DuckDuckGo image proxy."""

    name = 'DDG'
    tag = '#FFA500'
    BASE_URL = 'https://proxy.duckduckgo.com/iu/'
    _PATTERN = re.compile(r'^https://proxy\.duckduckgo\.com')

    def matches(self, url: str) -> bool:
        return bool(url) and bool(self._PATTERN.match(url))

    def _transform(self, url: str) -> str:
        return f"{self.BASE_URL}?u={encode_component(url)}&f=1"

    def reverse(self, url: str) -> str:
        if not self.matches(url):
            return url
        values = parse_qs(urlsplit(url).query).get('u')
        return values[0] if values else url


class Pocket(TransformStrategy):
    """Pocket's image cache, served directly or through its cloudfront front."""

    name = 'Pocket'
    tag = '#e082df'
    BASE_URL = 'https://d3du9nefdtilsa.cloudfront.net/unsafe/fit-in/x/smart/filters%3Ano_upscale()/'
    DIRECT_URL = 'https://pocket-image-cache.com/direct?url='
    _PATTERN = re.compile(
        r'(^https://pocket-image-cache\.com/direct\?url=)'
        r'|(cloudfront\.net/unsafe/fit-in/x/smart/filters%3Ano_upscale\(\)/)'
    )

    def matches(self, url: str) -> bool:
        return bool(url) and bool(self._PATTERN.search(url))

    def _transform(self, url: str) -> str:
        return self.DIRECT_URL + encode_component(url)

    def reverse(self, url: str) -> str:
        if not self.matches(url):
            return url
        if url.startswith(self.BASE_URL):
            return unquote(url[len(self.BASE_URL):])
        if url.startswith(self.DIRECT_URL):
            return unquote(url[len(self.DIRECT_URL):])
        return url


BUILTIN_STRATEGIES = {
    cls.name: cls for cls in (FileStack, SteemitImages, DDG, Pocket)
}


class StrategyRegistry:
    """Ordered catalog of transformation strategies.

    Order is fallback priority: the sequencer tries ``registry[0]`` first.
    """

    def __init__(self, strategies: Optional[Iterable[TransformStrategy]] = None):
        self._strategies: List[TransformStrategy] = []
        self._by_name: Dict[str, TransformStrategy] = {}
        for strategy in strategies or ():
            self.register(strategy)

    def register(self, strategy: TransformStrategy) -> TransformStrategy:
        """Append a strategy; names must be unique."""
        if not strategy.name:
            raise ValueError(f"Strategy {strategy!r} has no name")
        if strategy.name in self._by_name:
            raise DuplicateStrategyError(f"Strategy already registered: {strategy.name}")
        self._strategies.append(strategy)
        self._by_name[strategy.name] = strategy
        return strategy

    def all(self) -> Tuple[TransformStrategy, ...]:
        return tuple(self._strategies)

    def by_name(self, name: str) -> TransformStrategy:
        try:
            return self._by_name[name]
        except KeyError:
            raise StrategyNotFoundError(f"Unknown strategy: {name}") from None

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._strategies]

    def proxy_list(self, url: str) -> List[str]:
        """Every strategy's candidate for ``url``, in registry order."""
        return [s.apply(url) for s in self._strategies]

    def proxy_all(self, url: str) -> Dict[str, str]:
        return {s.name: s.apply(url) for s in self._strategies}

    def reverse_any(self, url: str) -> str:
        """Undo the first strategy whose produced form ``url`` is in."""
        for strategy in self._strategies:
            if strategy.matches(url):
                return strategy.reverse(url)
        return url

    def __len__(self) -> int:
        return len(self._strategies)

    def __iter__(self) -> Iterator[TransformStrategy]:
        return iter(tuple(self._strategies))

    def __getitem__(self, index: int) -> TransformStrategy:
        return self._strategies[index]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __repr__(self) -> str:
        return f"StrategyRegistry({self.names})"


def registry_from_names(names: Iterable[str], extra: Iterable[TransformStrategy] = ()) -> StrategyRegistry:
    """Build a registry in the given order from built-in and extra strategies."""
    available: Dict[str, Any] = {name: cls() for name, cls in BUILTIN_STRATEGIES.items()}
    for strategy in extra:
        available[strategy.name] = strategy

    registry = StrategyRegistry()
    for name in names:
        if name not in available:
            raise StrategyNotFoundError(f"Unknown strategy: {name}")
        registry.register(available[name])
    return registry


def default_registry() -> StrategyRegistry:
    """The built-in proxy chain in its default priority order."""
    return registry_from_names(BUILTIN_STRATEGIES)
