"""
This module contains the registry of compressors that may be applied to a
frame body after serialization. The compression mime-type travels with the
frame in a ``compression`` header so the receiving side can reverse it.
"""

import abc
import zlib
from collections import namedtuple
from typing import Dict, Optional, Tuple

try:
    import bz2

    have_bz2 = True
except ImportError:
    have_bz2 = False

try:
    import lzma

    have_lzma = True
except ImportError:
    have_lzma = False

try:
    import brotli

    have_brotli = True
except ImportError:
    have_brotli = False


COMPRESSION_NONE = "none"
COMPRESSION_GZIP = "application/gzip"
COMPRESSION_BZ2 = "application/x-bzip2"
COMPRESSION_LZMA = "application/x-lzma"
COMPRESSION_BROTLI = "application/x-brotli"
COMPRESSION_ZLIB = "application/zlib"
COMPRESSION_DEFLATE = "application/deflate"


codec = namedtuple("codec", ("content_type", "compressor"))


class ICompressor(abc.ABC):
    """
    This class represents the base interface for a compressor.
    """

    @abc.abstractmethod  # pragma: no branch
    def compress(self, data: bytes) -> bytes:
        """ Returns compressed data """

    @abc.abstractmethod  # pragma: no branch
    def decompress(self, data: bytes) -> bytes:
        """ Returns decompressed data """


class CompressorRegistry(object):
    """ This registry keeps track of compression strategies.

    A convenience name or the specific mime-type string can be used to
    reference a compressor.
    """

    def __init__(self) -> None:
        self._compressors = {}  # type: Dict[Optional[str], codec]
        self._default_codec = None  # type: Optional[str]
        self.type_to_name = {}  # type: Dict[Optional[str], Optional[str]]
        self.name_to_type = {}  # type: Dict[Optional[str], Optional[str]]

    def register(
        self, name: Optional[str], compressor: ICompressor, content_type: Optional[str]
    ) -> None:
        """ Register a new compressor.

        :param name: A convenience name for the compression method.

        :param compressor: An object that implements the ICompressor interface.

        :param content_type: The mime-type sent in the ``compression`` header.
        """
        if not isinstance(compressor, ICompressor):
            raise Exception(
                f"Invalid compressor '{name}'. Expected an instance of ICompressor"
            )

        self._compressors[name] = codec(content_type, compressor)

        # map convenience name to mime-type and back again.
        self.type_to_name[content_type] = name
        self.name_to_type[name] = content_type

    def set_default(self, name_or_type: Optional[str]) -> None:
        """ Set the compression method applied when none is requested.

        :raises Exception: If the compression method is not available.
        """
        name, _content_type = self._resolve(name_or_type)
        self._default_codec = name

    @property
    def compressors(self) -> Dict[Optional[str], codec]:
        """ Return a dict of the available compressors (codecs) """
        return self._compressors

    def get_codec(self, name_or_type: Optional[str]) -> codec:
        name, _content_type = self._resolve(name_or_type)
        return self._compressors[name]

    def get_compressor(self, name_or_type: Optional[str]) -> ICompressor:
        return self.get_codec(name_or_type).compressor

    def compress(
        self, data: bytes, name_or_type: Optional[str] = None
    ) -> Tuple[Optional[str], bytes]:
        """ Compress some data.

        :param data: The serialized frame body.

        :param name_or_type: The convenience name (e.g. zlib) or the mime-type
          (e.g. application/zlib) of the compression strategy. Defaults to the
          registry default, which is no compression.

        :returns: A tuple containing the compression mime-type and the
          compressed data.

        :raises Exception: If the compression method is not available.
        """
        name, content_type = self._resolve(name_or_type or self._default_codec)
        return content_type, self._compressors[name].compressor.compress(data)

    def decompress(
        self, data: bytes, name_or_type: Optional[str] = None
    ) -> Tuple[Optional[str], bytes]:
        """ Decompress data that was compressed using :meth:`compress`.

        :returns: A tuple containing the compression mime-type and the
          decompressed data.

        :raises Exception: If the compression method is not available.
        """
        name, content_type = self._resolve(name_or_type)
        return content_type, self._compressors[name].compressor.decompress(data)

    def _resolve(
        self, name_or_type: Optional[str]
    ) -> Tuple[Optional[str], Optional[str]]:
        if name_or_type == COMPRESSION_NONE:
            name_or_type = None
        if name_or_type in self.name_to_type:
            return name_or_type, self.name_to_type[name_or_type]
        if name_or_type in self.type_to_name:
            return self.type_to_name[name_or_type], name_or_type
        raise Exception(f"Invalid compressor '{name_or_type}'")


class ZlibFamilyCompressor(ICompressor):
    """
    zlib, raw deflate and gzip only differ in the window bits passed to zlib.

    After calling flush a (de)compressor object can't be used again. Hence,
    a new one is created for each use.
    """

    def __init__(self, wbits: int) -> None:
        self.wbits = wbits

    def compress(self, data: bytes) -> bytes:
        if not isinstance(data, bytes):
            raise Exception(f"Can only compress bytes, got {type(data)}")
        compressor = zlib.compressobj(level=9, wbits=self.wbits)
        return compressor.compress(data) + compressor.flush()

    def decompress(self, data: bytes) -> bytes:
        decompressor = zlib.decompressobj(self.wbits)
        return decompressor.decompress(data) + decompressor.flush()


def register_none(registry: CompressorRegistry) -> None:
    """ The compression you have when you don't want compression. """

    class NoneCompressor(ICompressor):
        def compress(self, data: bytes) -> bytes:
            if not isinstance(data, bytes):
                raise Exception(f"Can only compress bytes, got {type(data)}")
            return data

        def decompress(self, data: bytes) -> bytes:
            return data

    registry.register(None, NoneCompressor(), None)


def register_zlib(registry: CompressorRegistry) -> None:
    """ RFC 1950 (zlib), RFC 1951 (deflate) and RFC 1952 (gzip) formats """
    registry.register("zlib", ZlibFamilyCompressor(zlib.MAX_WBITS), COMPRESSION_ZLIB)
    registry.register(
        "deflate", ZlibFamilyCompressor(-zlib.MAX_WBITS), COMPRESSION_DEFLATE
    )
    registry.register(
        "gzip", ZlibFamilyCompressor(zlib.MAX_WBITS | 16), COMPRESSION_GZIP
    )


def register_bz2(registry: CompressorRegistry) -> None:
    if have_bz2:

        class Bz2Compressor(ICompressor):
            def compress(self, data: bytes) -> bytes:
                if not isinstance(data, bytes):
                    raise Exception(f"Can only compress bytes, got {type(data)}")
                return bz2.compress(data)

            def decompress(self, data: bytes) -> bytes:
                return bz2.decompress(data)

        registry.register("bzip2", Bz2Compressor(), COMPRESSION_BZ2)


def register_lzma(registry: CompressorRegistry) -> None:
    if have_lzma:

        class LzmaCompressor(ICompressor):
            def compress(self, data: bytes) -> bytes:
                if not isinstance(data, bytes):
                    raise Exception(f"Can only compress bytes, got {type(data)}")
                return lzma.compress(data)

            def decompress(self, data: bytes) -> bytes:
                return lzma.decompress(data)

        registry.register("lzma", LzmaCompressor(), COMPRESSION_LZMA)


def register_brotli(registry: CompressorRegistry) -> None:
    """ Brotli is only available when the optional brotli package is installed """
    if have_brotli:

        class BrotliCompressor(ICompressor):
            def compress(self, data: bytes) -> bytes:
                if not isinstance(data, bytes):
                    raise Exception(f"Can only compress bytes, got {type(data)}")
                return brotli.compress(data)

            def decompress(self, data: bytes) -> bytes:
                return brotli.decompress(data)

        registry.register("brotli", BrotliCompressor(), COMPRESSION_BROTLI)


def initialize(registry: CompressorRegistry) -> None:
    """ Register compression methods and set a default """
    register_none(registry)
    register_zlib(registry)
    register_bz2(registry)
    register_lzma(registry)
    register_brotli(registry)

    registry.set_default(None)


registry = CompressorRegistry()

compress = registry.compress

decompress = registry.decompress

initialize(registry)
