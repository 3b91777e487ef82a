import logging

import numpy as np

logger = logging.getLogger(__name__)

ALIGNMENT = 8 # bytes, every allocation starts on this boundary


class OutOfMemory(MemoryError):
    def __init__(self, requested, available):
        super().__init__(f"arena exhausted: requested {requested} bytes, {available} available")
        self.requested = requested
        self.available = available


def align(offset):
    return (offset + ALIGNMENT - 1) & ~(ALIGNMENT - 1)


### ARENA ###
# Bump allocator over a caller-owned byte buffer. Regions are handed out as
# numpy views into the buffer and are never freed individually.
class Arena:
    def __init__(self, buffer, capacity=None):
        memory = np.frombuffer(buffer, dtype=np.uint8)
        if not memory.flags.writeable:
            raise ValueError("arena buffer must be writable")
        if capacity is None:
            capacity = memory.size
        if capacity < 0 or capacity > memory.size:
            raise ValueError(f"capacity {capacity} outside buffer of {memory.size} bytes")

        # bytes skipped so that offset 0 sits on an aligned address
        self.skip = min(-memory.__array_interface__["data"][0] % ALIGNMENT, capacity)
        self.memory = memory[self.skip:capacity]
        self.capacity = capacity - self.skip
        self.cursor = 0

    @property
    def used(self):
        return self.cursor

    @property
    def remaining(self):
        return self.capacity - self.cursor

    # full re-initialization, the only way the cursor moves backward
    def reset(self):
        self.cursor = 0

    def allocate(self, nbytes):
        if nbytes < 0:
            raise ValueError(f"negative allocation size: {nbytes}")
        offset = self.cursor
        if offset + nbytes > self.capacity:
            raise OutOfMemory(nbytes, self.remaining)
        self.cursor = min(align(offset + nbytes), self.capacity)
        logger.debug("arena: %d bytes at offset %d", nbytes, offset)
        return offset

    def view(self, offset, length, dtype=np.float64):
        dtype = np.dtype(dtype)
        return self.memory[offset:offset + length * dtype.itemsize].view(dtype)

    def array(self, length, dtype=np.float64):
        dtype = np.dtype(dtype)
        offset = self.allocate(length * dtype.itemsize)
        return self.view(offset, length, dtype)

    # single structured record as a 0-d view, fields assignable in place
    def record(self, dtype):
        return self.array(1, dtype).reshape(())

    # all remaining space, uncommitted; for arrays whose length is only known
    # once built, followed by commit() for the prefix actually written
    def pending(self, dtype=np.float64):
        dtype = np.dtype(dtype)
        return self.view(self.cursor, self.remaining // dtype.itemsize, dtype)

    def commit(self, length, dtype=np.float64):
        return self.allocate(length * np.dtype(dtype).itemsize)

    # transient region at the cursor, handed out again on the next call
    def scratch(self, length, dtype=np.float64):
        dtype = np.dtype(dtype)
        if length * dtype.itemsize > self.remaining:
            raise OutOfMemory(length * dtype.itemsize, self.remaining)
        return self.view(self.cursor, length, dtype)
