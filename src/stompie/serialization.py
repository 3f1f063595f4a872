"""
This module contains the registry of serializers used to turn message bodies
into bytes and back. A serializer is looked up by its convenience name (e.g.
``json``) or by the mime-type carried in a frame's ``content-type`` header
(e.g. ``application/json``).
"""

import abc
import json

from collections import namedtuple
from typing import Any, Dict, Optional, Tuple

try:
    import msgpack

    have_msgpack = True
except ImportError:
    have_msgpack = False

try:
    import yaml

    have_yaml = True
except ImportError:
    have_yaml = False


CONTENT_TYPE_DATA = "application/octet-stream"
CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_MSGPACK = "application/msgpack"
CONTENT_TYPE_TEXT = "text/plain"
CONTENT_TYPE_YAML = "application/yaml"


codec = namedtuple("codec", ("content_type", "content_encoding", "serializer"))


class ISerializer(abc.ABC):
    """
    This class represents the base interface for a serializer.
    """

    @abc.abstractmethod  # pragma: no branch
    def encode(self, data: Any) -> bytes:
        """ Returns serialized data as a bytes object. """

    @abc.abstractmethod  # pragma: no branch
    def decode(self, data: bytes) -> Any:
        """ Returns deserialized data """


class SerializerRegistry(object):
    """ This registry keeps track of serialization strategies.

    A convenience name and a content-type string both map to the same codec.
    """

    def __init__(self) -> None:
        self._serializers = {}  # type: Dict[Optional[str], codec]
        self._default_codec = None  # type: Optional[str]
        self.type_to_name = {}  # type: Dict[str, Optional[str]]
        self.name_to_type = {}  # type: Dict[Optional[str], str]

    def register(
        self,
        name: Optional[str],
        serializer: ISerializer,
        content_type: str,
        content_encoding: str = "utf-8",
    ) -> None:
        """ Register a new serializer.

        :param name: A convenience name for the serialization method.

        :param serializer: An object that implements the ISerializer interface
          that can encode objects and decode data back into the original object.

        :param content_type: The mime-type placed in the ``content-type``
          header of frames whose body was produced by this serializer.

        :param content_encoding: The character set of the encoded data. Will
          usually be `utf-8` or `binary`.
        """
        if not isinstance(serializer, ISerializer):
            raise Exception(
                f"Invalid serializer '{name}'. Expected an instance of ISerializer"
            )

        self._serializers[name] = codec(content_type, content_encoding, serializer)

        # map convenience name to mime-type and back again.
        self.type_to_name[content_type] = name
        self.name_to_type[name] = content_type

    def set_default(self, name_or_type: Optional[str]) -> None:
        """ Set the serializer used for objects that are neither str nor bytes.

        :raises Exception: If the serialization method is not available.
        """
        name, _content_type = self._resolve(name_or_type)
        self._default_codec = name

    @property
    def serializers(self) -> Dict[Optional[str], codec]:
        """ Return a dict of the available serializers (codecs) """
        return self._serializers

    def get_codec(self, name_or_type: Optional[str]) -> codec:
        name, _content_type = self._resolve(name_or_type)
        return self._serializers[name]

    def get_serializer(self, name_or_type: Optional[str]) -> ISerializer:
        return self.get_codec(name_or_type).serializer

    def dumps(
        self, data: Any, name_or_type: Optional[str] = None
    ) -> Tuple[str, str, bytes]:
        """ Encode data.

        Serialize a data structure into a bytes object suitable for sending as
        a frame body.

        :param data: The message data to send.

        :param name_or_type: The name or mime-type of the serialization
          strategy to apply to the data (e.g. ``json``). If not specified a
          best effort guess is made. A str is sent as text, bytes are sent
          unchanged and anything else uses the default serializer (JSON).

        :returns: A string specifying the content type (e.g.,
          `application/json`), a string specifying the content encoding (e.g.
          `utf-8`) and the serialized data as bytes.

        :raises Exception: If the serialization method requested is not
          available.
        """
        if name_or_type:
            content_type, content_encoding, serializer = self.get_codec(name_or_type)
        elif isinstance(data, bytes):
            content_type, content_encoding, serializer = self.get_codec(None)
        elif isinstance(data, str):
            content_type, content_encoding, serializer = self.get_codec("text")
        else:
            content_type, content_encoding, serializer = self.get_codec(
                self._default_codec
            )

        return content_type, content_encoding, serializer.encode(data)

    def loads(self, data: bytes, content_type: Optional[str] = None) -> Any:
        """ Decode serialized data.

        Deserialize a frame body based on its content type. A content-type
        parameter such as ``;charset=utf-8`` is ignored. Bodies with an
        unknown or missing content type are returned as bytes.

        :param data: The frame body to deserialize.

        :param content_type: The content-type of the data (e.g.,
          application/json).
        """
        if not data or not content_type:
            return data

        mime_type = content_type.split(";", 1)[0].strip().lower()
        if mime_type not in self.type_to_name:
            return data

        _ct, _ce, serializer = self._serializers[self.type_to_name[mime_type]]
        return serializer.decode(data)

    def _resolve(self, name_or_type: Optional[str]) -> Tuple[Optional[str], str]:
        if name_or_type in self.name_to_type:
            return name_or_type, self.name_to_type[name_or_type]
        if name_or_type in self.type_to_name:
            return self.type_to_name[name_or_type], name_or_type
        raise Exception(f"Invalid serializer '{name_or_type}'")


def register_none(registry: SerializerRegistry) -> None:
    """ The serialization you have when you don't want serialization. """

    class NoneSerializer(ISerializer):
        def encode(self, data: bytes) -> bytes:
            if not isinstance(data, (bytes, bytearray)):
                raise Exception(f"Can only serialize bytes type, got {type(data)}")
            return bytes(data)

        def decode(self, data: bytes) -> bytes:
            return data

    registry.register(
        None,
        NoneSerializer(),
        content_type=CONTENT_TYPE_DATA,
        content_encoding="binary",
    )


def register_text(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for plain text bodies. """

    class TextSerializer(ISerializer):
        def encode(self, text: str) -> bytes:
            return text.encode("utf-8")

        def decode(self, data: bytes) -> str:
            return data.decode("utf-8")

    registry.register(
        "text",
        TextSerializer(),
        content_type=CONTENT_TYPE_TEXT,
        content_encoding="utf-8",
    )


def register_json(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for JSON serialization. """

    class JsonSerializer(ISerializer):
        def encode(self, data: Any) -> bytes:
            return json.dumps(data).encode("utf-8")

        def decode(self, data: bytes) -> Any:
            return json.loads(data.decode("utf-8"))

    registry.register(
        "json",
        JsonSerializer(),
        content_type=CONTENT_TYPE_JSON,
        content_encoding="utf-8",
    )


def register_msgpack(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for MsgPack serialization. """

    if have_msgpack:

        class MsgpackSerializer(ISerializer):
            """
            The use_bin_type flag keeps str and bytes values apart so that
            they come back as the types they were sent as.
            """

            def encode(self, data: Any) -> bytes:
                return msgpack.packb(data, use_bin_type=True)

            def decode(self, data: bytes) -> Any:
                return msgpack.unpackb(data, raw=False)

        registry.register(
            "msgpack",
            MsgpackSerializer(),
            content_type=CONTENT_TYPE_MSGPACK,
            content_encoding="binary",
        )


def register_yaml(registry: SerializerRegistry) -> None:
    """ Register an encoder/decoder for YAML serialization.

    It is slower than JSON, but allows for more data types to be serialized,
    such as dates.
    """

    if have_yaml:

        class YamlSerializer(ISerializer):
            def encode(self, data: Any) -> bytes:
                return yaml.safe_dump(data).encode("utf-8")

            def decode(self, data: bytes) -> Any:
                return yaml.safe_load(data.decode("utf-8"))

        registry.register(
            "yaml",
            YamlSerializer(),
            content_type=CONTENT_TYPE_YAML,
            content_encoding="utf-8",
        )


def initialize(registry: SerializerRegistry) -> None:
    """ Register serialization methods and set a default """
    register_none(registry)
    register_text(registry)
    register_json(registry)
    register_msgpack(registry)
    register_yaml(registry)

    registry.set_default("json")


"""
.. data:: registry

Global registry of serializers/deserializers.
"""
registry = SerializerRegistry()

dumps = registry.dumps

loads = registry.loads

initialize(registry)
