# --------------------------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
from typing import Callable, Mapping, TYPE_CHECKING
from typing_extensions import TypedDict

if TYPE_CHECKING:
    from .models import Message, Disposition  # noqa: F401


MessageHandler = Callable[["Message"], "Disposition"]
Clock = Callable[[], float]
Environ = Mapping[str, str]


class SignRequest(TypedDict):
    keyId: str
    algo: str
    data: str


class SignResponse(TypedDict):
    digest: str


class TrustBundle(TypedDict):
    certificate: str
