import io
from typing import Callable


class OutStream(io.TextIOBase):
    """
    File-like object that turns writes into ``stream`` broadcasts.

    Text is buffered and published whenever a write contains a newline and
    on flush, so one print() becomes one message.
    """

    def __init__(self, name: str, publish: Callable[[str, dict], None]):
        super().__init__()
        self.name = name
        self._publish = publish
        self._buffer: list[str] = []

    @property
    def encoding(self) -> str:
        return "utf-8"

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def write(self, text: str) -> int:
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        if text:
            self._buffer.append(text)
            if "\n" in text:
                self.flush()
        return len(text)

    def flush(self) -> None:
        if not self._buffer:
            return
        data = "".join(self._buffer)
        self._buffer.clear()
        self._publish("stream", {"name": self.name, "data": data})
