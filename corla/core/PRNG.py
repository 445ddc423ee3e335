import hashlib
import threading
from cryptorandom.cryptorandom import int_from_hash

##########################################################################################
class PseudoRandomNumberGenerator:
    '''
    Deterministic sampler driven by a public seed.

    Draw i (counting from 1) is derived by hashing the UTF-8 bytes of "{seed},{i}" with
    SHA-256, reading the digest as an unsigned big-endian integer, reducing it modulo the
    size of the domain [minimum, maximum] and adding minimum.

    Without replacement, a draw equal to a value that was already accepted is discarded,
    but the counter still advances. The same seed therefore always yields the same
    sequence of attempts and the same accepted sequence.

    Draws are generated lazily and cached. Reads of the cache can be shared; extension of
    the cache is serialized with a lock.
    '''

    MINIMUM_SEED_LENGTH = 20

    def __init__(self, seed: str=None, with_replacement: bool=True, minimum: int=1, maximum: int=None):
        assert seed is not None and len(seed) >= self.MINIMUM_SEED_LENGTH, \
            f'seed must be at least {self.MINIMUM_SEED_LENGTH} characters'
        assert maximum is not None and minimum < maximum, \
            f'minimum {minimum} must be less than maximum {maximum}'
        self.seed = seed
        self.with_replacement = with_replacement
        self.minimum = minimum
        self.maximum = maximum
        self.count = 0
        self.random_numbers = []
        self._accepted = set()
        self._lock = threading.Lock()

    def __str__(self):
        return (f'PseudoRandomNumberGenerator(seed={self.seed}, with_replacement={self.with_replacement}, '
                f'minimum={self.minimum}, maximum={self.maximum}, drawn={len(self.random_numbers)})')

    @property
    def domain_size(self) -> int:
        return self.maximum - self.minimum + 1

    @property
    def attempts(self) -> int:
        '''
        number of hashes computed so far; exceeds the number of accepted values when
        draws without replacement collided
        '''
        return self.count

    @staticmethod
    def seed_only_contains_digits(seed: str) -> bool:
        return bool(seed) and all(c in '0123456789' for c in seed)

    def draw(self, index: int) -> int:
        '''
        the value of the attempt with 1-based counter `index`, before any deduplication
        '''
        digest = hashlib.sha256(f'{self.seed},{index}'.encode('utf-8')).digest()
        return self.minimum + int_from_hash(digest) % self.domain_size

    def _extend(self, index: int):
        with self._lock:
            while len(self.random_numbers) <= index:
                self.count += 1
                rand = self.draw(self.count)
                if self.with_replacement:
                    self.random_numbers.append(rand)
                elif rand not in self._accepted:
                    self._accepted.add(rand)
                    self.random_numbers.append(rand)

    def get_random_numbers(self, frm: int, to: int) -> list:
        '''
        Pseudo-random numbers in positions frm through to, inclusive, of the accepted sequence.

        Parameters
        ----------
        frm: int
            0-based index of the first value to return
        to: int
            0-based index of the last value to return

        Returns
        -------
        list of int
            accepted values [frm, to]

        Side effects
        ------------
        extends the cache of accepted values through index `to`
        '''
        assert frm <= to, f'from index {frm} exceeds to index {to}'
        assert self.with_replacement or to < self.domain_size, \
            f'cannot draw index {to} without replacement from a domain of size {self.domain_size}'
        if len(self.random_numbers) <= to:
            self._extend(to)
        return self.random_numbers[frm:to+1]
