# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""pinverify client configuration.

Wire-protocol constants are fixed by the remote verification service.
Configurable defaults may be overridden via environment variables.
"""

import os

# =============================================================================
# WIRE PROTOCOL CONSTANTS (fixed by the remote service)
# =============================================================================

SIGNATURE_ALGORITHM: str = "md5"
SDK_REVISION: str = "1.2.0"
OS_FAMILY: str = "PYTHON"
PARAMS_ENCODING: str = "UTF-8"

# Remote method paths, appended to the environment base URL.
METHOD_TOKEN: str = "token/json"
METHOD_VERIFY: str = "verify/json"
METHOD_CHECK: str = "verify/check/json"
METHOD_SEARCH: str = "verify/search/json"
METHOD_LOGOUT: str = "verify/logout/json"
METHOD_CONTROL: str = "verify/control/json"

# Custom HTTP headers.
HEADER_OS_FAMILY: str = "X-NEXMO-SDK-OS-FAMILY"
HEADER_OS_REVISION: str = "X-NEXMO-SDK-OS-REVISION"
HEADER_SDK_REVISION: str = "X-NEXMO-SDK-REVISION"
HEADER_CONTENT_ENCODING: str = "Content-Encoding"
RESPONSE_SIGNATURE_HEADER: str = "X-NEXMO-RESPONSE-SIGNATURE"

# Request parameters.
PARAM_APP_ID: str = "app_id"
PARAM_DEVICE_ID: str = "device_id"
PARAM_SOURCE_IP: str = "source_ip_address"
PARAM_COUNTRY_CODE: str = "country"
PARAM_NUMBER: str = "number"
PARAM_TOKEN: str = "token"
PARAM_CODE: str = "code"
PARAM_COMMAND: str = "cmd"
PARAM_LANGUAGE: str = "lg"
PARAM_PUSH_TOKEN: str = "push_token"
PARAM_TIMESTAMP: str = "timestamp"
PARAM_SIGNATURE: str = "sig"

COMMAND_CANCEL: str = "cancel"
COMMAND_TRIGGER_NEXT_EVENT: str = "trigger_next_event"

# =============================================================================
# ENDPOINTS
# =============================================================================

ENDPOINT_PRODUCTION: str = os.getenv("PINVERIFY_ENDPOINT_PRODUCTION", "https://api.nexmo.com/sdk/")
ENDPOINT_SANDBOX: str = os.getenv("PINVERIFY_ENDPOINT_SANDBOX", "")

# =============================================================================
# CONFIGURABLE DEFAULTS
# =============================================================================

CLOCK_SKEW_SECONDS: int = int(os.getenv("PINVERIFY_CLOCK_SKEW_SECONDS", "300"))
CONNECT_TIMEOUT_SECONDS: float = float(os.getenv("PINVERIFY_CONNECT_TIMEOUT", "15.0"))
READ_TIMEOUT_SECONDS: float = float(os.getenv("PINVERIFY_READ_TIMEOUT", "10.0"))
MAX_CONCURRENT_REQUESTS: int = int(os.getenv("PINVERIFY_MAX_CONCURRENT_REQUESTS", "4"))

# =============================================================================
# INPUT POLICY
# =============================================================================

MIN_PIN_LENGTH: int = int(os.getenv("PINVERIFY_MIN_PIN_LENGTH", "4"))
MAX_PIN_LENGTH: int = int(os.getenv("PINVERIFY_MAX_PIN_LENGTH", "6"))
MIN_PHONE_NUMBER_LENGTH: int = 2
MAX_PHONE_NUMBER_LENGTH: int = 15

# Verification requests cannot be cancelled, nor advanced to the next
# delivery event, before this many seconds in pending state.
COMMAND_MIN_PENDING_SECONDS: float = float(os.getenv("PINVERIFY_COMMAND_MIN_PENDING_SECONDS", "30"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("PINVERIFY_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("PINVERIFY_LOG_FORMAT", "json")
