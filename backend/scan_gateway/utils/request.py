from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP, honouring the usual proxy headers

    Args:
        request: Incoming request

    Returns:
        First hop of X-Forwarded-For, X-Real-IP, CF-Connecting-IP,
        the socket peer, or 'unknown'
    """
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        first_hop = forwarded.split(',')[0].strip()
        if first_hop:
            return first_hop

    for header in ('x-real-ip', 'cf-connecting-ip'):
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client and request.client.host:
        return request.client.host

    return 'unknown'
