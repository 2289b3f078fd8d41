import json
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from reliable_queue.core.exceptions import MessageDecodingError, UsageError
from reliable_queue.schemas.envelope import Envelope

TYPE_HEADER = "x-message-type"


class Serializer(ABC):
    """Converts envelopes to the (body, headers) pair stored by engines."""

    @abstractmethod
    def encode(self, envelope: Envelope) -> Tuple[str, Dict[str, str]]:
        pass

    @abstractmethod
    def decode(self, body: str, headers: Mapping[str, str]) -> Envelope:
        """
        Raises:
            MessageDecodingError: If the stored message cannot be decoded
        """


class JsonSerializer(Serializer):
    """
    JSON serializer.

    Plain JSON values are stored as is. Pydantic models must be registered
    under a name, which travels in the ``x-message-type`` header and selects
    the model used to validate the body on receipt.
    """

    def __init__(self, types: Optional[Mapping[str, Type[BaseModel]]] = None):
        self._types: Dict[str, Type[BaseModel]] = {}
        self._names: Dict[Type[BaseModel], str] = {}
        for name, model in (types or {}).items():
            self.register(name, model)

    def register(self, name: str, model: Type[BaseModel]) -> None:
        self._types[name] = model
        self._names[model] = name

    def encode(self, envelope: Envelope) -> Tuple[str, Dict[str, str]]:
        headers = dict(envelope.headers)
        message = envelope.message

        if isinstance(message, BaseModel):
            name = self._names.get(type(message))
            if name is None:
                raise UsageError(f"Message type {type(message).__name__} is not registered with the serializer.")
            headers[TYPE_HEADER] = name
            return message.model_dump_json(), headers

        if TYPE_HEADER in headers:
            raise UsageError(f'Header "{TYPE_HEADER}" is reserved for registered message types.')

        try:
            return json.dumps(message), headers
        except (TypeError, ValueError) as e:
            raise UsageError(f"Message is not JSON serializable: {e}") from e

    def decode(self, body: str, headers: Mapping[str, str]) -> Envelope:
        type_name = headers.get(TYPE_HEADER)
        try:
            if type_name is None:
                message = json.loads(body)
            else:
                model = self._types.get(type_name)
                if model is None:
                    raise MessageDecodingError(f'Unknown message type "{type_name}".')
                message = model.model_validate_json(body)
        except (ValidationError, ValueError, TypeError) as e:
            raise MessageDecodingError(f"Could not decode message body: {e}") from e

        return Envelope(message=message, headers=dict(headers))
