import io
import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from python_multipart.exceptions import FormParserError

    from multer import MemoryStorage, Multer, MulterError

BOUNDARY = "boundary"

uploads = Multer(storage=MemoryStorage(), limits={"file_size": 4096, "parts": 16})
handlers = [uploads.single("file"), uploads.array("file", 2), uploads.fields(["a", "b"]), uploads.none(), uploads.any()]


class Request:
    def __init__(self, body: bytes) -> None:
        self.headers = {
            "Content-Type": f"multipart/form-data; boundary={BOUNDARY}",
            "Content-Length": str(len(body)),
        }
        self.stream = io.BytesIO(body)


def random_body(fdp: EnhancedDataProvider) -> bytes:
    return fdp.ConsumeRandomBytes()


def structured_body(fdp: EnhancedDataProvider) -> bytes:
    parts = []
    for _ in range(fdp.ConsumeIntInRange(0, 4)):
        disposition = f'form-data; name="{fdp.ConsumeShortString()}"'
        if fdp.ConsumeBool():
            disposition += f'; filename="{fdp.ConsumeShortString()}"'
        parts.append(
            f"--{BOUNDARY}\r\n"
            f"Content-Disposition: {disposition}\r\n"
            f"Content-Transfer-Encoding: {fdp.PickValueInList(['7bit', 'base64', 'quoted-printable'])}\r\n\r\n"
            f"{fdp.ConsumeShortString(64)}\r\n"
        )
    parts.append(f"--{BOUNDARY}--\r\n")
    return "".join(parts).encode("utf-8", errors="ignore")


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    handler = fdp.PickValueInList(handlers)
    make_body = fdp.PickValueInList([random_body, structured_body])
    request = Request(make_body(fdp))

    try:
        handler(request)
    except (FormParserError, MulterError):
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
