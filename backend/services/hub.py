"""Hub driver selection.

A hub driver exposes connect(), list_lights(), set_on(), set_color(),
set_brightness(), ping() and close().  list_lights() returns fixture dicts:

    {"id", "name",
     "capabilities": {"supports_color", "supports_brightness", "color_temperature_range"},
     "state": {"on", "brightness", "color"}}
"""

import config


class HubError(RuntimeError):
    """The hub could not be reached or rejected a call."""


def create_hub(kind=None, access_token=None):
    kind = (kind or config.LIGHT_HUB).lower()
    if kind == "dirigera":
        from services.dirigera import DirigeraHub
        return DirigeraHub(config.DIRIGERA_GATEWAY_IP, access_token or config.DIRIGERA_ACCESS_TOKEN,
                           timeout=config.HUB_TIMEOUT)
    if kind == "govee":
        from services.govee_lan import GoveeLanHub
        return GoveeLanHub(timeout=config.HUB_TIMEOUT)
    raise ValueError(f"Unknown LIGHT_HUB '{kind}'. Must be 'dirigera' or 'govee'")
