from twisted.python.url import URL


LETSENCRYPT_DIRECTORY = URL.fromText(
    u'https://acme-v02.api.letsencrypt.org/directory')


LETSENCRYPT_STAGING_DIRECTORY = URL.fromText(
    u'https://acme-staging-v02.api.letsencrypt.org/directory')


PEBBLE_DIRECTORY = URL.fromText(u'https://localhost:14000/dir')


__all__ = [
    'LETSENCRYPT_DIRECTORY', 'LETSENCRYPT_STAGING_DIRECTORY',
    'PEBBLE_DIRECTORY']
