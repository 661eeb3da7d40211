from okrhub.linkhub.api import LinkHubAPI
_client = None

def get_linkhub_client():
    '''
    Returns a singleton instance of the LinkHubAPI class
    '''
    global _client
    if _client is None:
        from okrhub.config import Config as cfg
        _client = LinkHubAPI(timeout=cfg.LINKHUB_TIMEOUT_SECONDS)
    return _client
