import hashlib

# The first 15 hex digits of the digest give a 60-bit value.
_HASH_PREFIX_LEN = 15
_HASH_BITS = _HASH_PREFIX_LEN * 4

BUCKET_COUNT = 100


class Bucketer:
    """
    Maps an identifier to a stable bucket in [0, 100).

    The bucket is derived from a SHA-1 digest of ``"<salt>.<identifier>"``, so it does not depend
    on the process, the platform or ``PYTHONHASHSEED``. Giving each flag its own salt keeps a user's
    bucket in one flag independent from their bucket in another.
    """

    def bucket(self, identifier: str, salt: str = '') -> int:
        if not identifier:
            raise ValueError('cannot compute a bucket for an empty identifier')
        hash_key = '%s.%s' % (salt, identifier)
        hash_val = int(hashlib.sha1(hash_key.encode('utf-8')).hexdigest()[:_HASH_PREFIX_LEN], 16)
        return (hash_val * BUCKET_COUNT) >> _HASH_BITS

