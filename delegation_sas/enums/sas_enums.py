# Short codes used by the storage service in user delegation SAS tokens
from enum import Enum


class SasPermission(str, Enum):
    # https://learn.microsoft.com/en-us/rest/api/storageservices/create-user-delegation-sas#specify-permissions
    read = "r"
    read_write = "rw"
    read_delete = "rd"
    read_list = "rl"


class SignedService(str, Enum):
    blob = "b"
    blob_version = "bv"
    blob_snapshot = "bs"
    container = "c"
    directory = "d"


class SignedResource(str, Enum):
    blob = "b"
    container = "c"

    @classmethod
    def for_blob_name(cls, blob_name: str) -> "SignedResource":
        return cls.blob if blob_name else cls.container
