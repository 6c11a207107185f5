from urllib.parse import quote


def build_proxy_url(proxy_url: str, target_url: str) -> str:
    """Return the URL to actually fetch for target_url.

    Proxies taking a ``?url=`` parameter get the target percent-encoded;
    any other proxy string is used as a plain prefix.
    """
    if not proxy_url:
        return target_url
    if "?url=" in proxy_url:
        # same reserved set as encodeURIComponent
        return proxy_url + quote(target_url, safe="-_.!~*'()")
    return proxy_url + target_url
