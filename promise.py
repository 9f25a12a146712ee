'''Synchronous promises.

A Promise stands for a value that is not known yet. It is settled once,
either fulfilled with a value or rejected with a reason, by the
``resolve`` / ``reject`` callables handed to its initializer. Handlers
attached with :meth:`Promise.then` run in attachment order when the
promise settles, or straight away if it already has.

There is no event loop: everything runs on the call stack of whoever
settles a promise or attaches a handler.
'''

import logging
from collections import deque
from functools import partial

__all__ = [
    'PENDING', 'FULFILLED', 'REJECTED',
    'Promise', 'Deferred', 'PromiseException', 'PromiseCycleError',
    'fulfill', 'reject', 'resolve', 'register',
]

logger = logging.getLogger(__name__)

PENDING = 'pending'
FULFILLED = 'fulfilled'
REJECTED = 'rejected'

# Handler lists of settled promises, waiting to run.
drains = deque()
draining = False


class PromiseException(Exception):
    '''Carries an arbitrary rejection reason out of a handler.'''

    def __init__(self, value):
        super().__init__(value)
        self.value = value

    def __str__(self):
        return repr(self.value)


class PromiseCycleError(TypeError):
    '''A promise was resolved with itself.'''


def empty(resolve, reject):
    pass


def identity(value):
    return value


def thrower(reason):
    raise PromiseException(reason)


def is_promise(value):
    return isinstance(value, Promise)


def is_collection(value):
    return isinstance(value, (list, tuple))


def run_handler(handler, value):
    try:
        handler(value)
    except Exception:
        logger.exception('promise handler %r raised', handler)


def settle(promise, state, value):
    global draining
    if promise.state != PENDING:
        return
    promise.state = state
    promise.result = value

    jobs = promise.fulfill_queue if state == FULFILLED else promise.reject_queue
    promise.fulfill_queue = []
    promise.reject_queue = []
    logger.debug('promise %s, %d handler(s) queued', state, len(jobs))
    drains.append((jobs, value))

    # Settlements made by handlers are drained by the outermost call.
    if draining:
        return
    draining = True
    try:
        while drains:
            jobs, value = drains.popleft()
            for job in jobs:
                run_handler(job, value)
    finally:
        draining = False
        drains.clear()


def fulfill(promise, value):
    settle(promise, FULFILLED, value)


def reject(promise, reason):
    settle(promise, REJECTED, reason)


def register(promise, on_fulfilled, on_rejected):
    '''Queue a handler pair on a pending promise, or run the matching one now.

    Errors raised by either handler are logged, never propagated.
    '''
    if promise.state == PENDING:
        promise.fulfill_queue.append(on_fulfilled)
        promise.reject_queue.append(on_rejected)
    elif promise.state == FULFILLED:
        run_handler(on_fulfilled, promise.result)
    else:
        run_handler(on_rejected, promise.result)


def resolve(promise, value):
    '''Settle ``promise`` with ``value``, following ``value`` if it is a promise.

    Nested promises are followed all the way down. Raises
    :class:`PromiseCycleError` if ``value`` is ``promise`` itself.
    '''
    if promise.state != PENDING:
        return
    if value is promise:
        raise PromiseCycleError('a promise cannot be resolved with itself')
    if not is_promise(value):
        fulfill(promise, value)
        return
    register(value, partial(adopt, promise), partial(reject, promise))


def adopt(promise, value):
    try:
        resolve(promise, value)
    except PromiseCycleError as e:
        reject(promise, e)


def execute(promise, handler, value):
    try:
        result = handler(value)
    except PromiseException as e:
        reject(promise, e.value)
        return
    except Exception as e:
        reject(promise, e)
        return
    adopt(promise, result)


class Promise:
    def __init__(self, fn):
        self.state = PENDING
        self.result = None
        self.fulfill_queue = []
        self.reject_queue = []

        promise = self

        try:
            fn(lambda value=None: resolve(promise, value), lambda reason=None: reject(promise, reason))
        except PromiseException as e:
            reject(promise, e.value)
        except Exception as e:
            reject(promise, e)

    def __repr__(self):
        if self.state == PENDING:
            return '<Promise pending>'
        return '<Promise %s: %r>' % (self.state, self.result)

    @property
    def is_pending(self):
        return self.state == PENDING

    @property
    def is_fulfilled(self):
        return self.state == FULFILLED

    @property
    def is_rejected(self):
        return self.state == REJECTED

    @staticmethod
    def resolve(value=None):
        promise = Promise(empty)
        resolve(promise, value)
        return promise

    @staticmethod
    def reject(reason=None):
        promise = Promise(empty)
        reject(promise, reason)
        return promise

    def then(self, on_fulfilled=None, on_rejected=None):
        '''Return a new promise settled by running a handler on this one's outcome.

        A missing ``on_fulfilled`` passes the value through and a missing
        ``on_rejected`` passes the reason through. Whatever the handler
        returns resolves the new promise; whatever it raises rejects it.
        '''
        if not callable(on_fulfilled):
            on_fulfilled = identity
        if not callable(on_rejected):
            on_rejected = thrower

        child = Promise(empty)
        register(self, partial(execute, child, on_fulfilled), partial(execute, child, on_rejected))
        return child

    def catch(self, on_rejected):
        return self.then(None, on_rejected)

    def finally_(self, on_finally):
        '''Run ``on_finally()`` on either outcome and keep the original one.

        The outcome is replaced only when ``on_finally`` raises, or returns
        a promise that rejects.
        '''
        def on_fulfilled(value):
            return Promise.resolve(on_finally()).then(lambda _: value)

        def on_rejected(reason):
            return Promise.resolve(on_finally()).then(lambda _: thrower(reason))

        return self.then(on_fulfilled, on_rejected)

    @staticmethod
    def all(items):
        '''Fulfill with the values of ``items`` in order, or reject with the first rejection.

        Items that are not promises count as already fulfilled. An empty
        list fulfills with ``[]``; a non-list value is resolved as is.
        '''
        def collect(resolve, reject):
            if not is_collection(items):
                resolve(items)
                return

            results = [None] * len(items)
            remaining = len(items)

            def store(index, value):
                nonlocal remaining
                results[index] = value
                remaining -= 1
                if remaining == 0:
                    resolve(results)

            for index, item in enumerate(items):
                if is_promise(item):
                    item.then(partial(store, index), reject)
                else:
                    store(index, item)

            if not items:
                resolve(results)

        return Promise(collect)

    @staticmethod
    def race(items):
        '''Fulfill like the first item to fulfill. Rejected items are ignored.'''
        def contest(resolve, reject):
            if not is_collection(items):
                resolve(items)
                return
            for item in items:
                if is_promise(item):
                    item.then(resolve)
                else:
                    resolve(item)

        return Promise(contest)

    @staticmethod
    def all_settled(items):
        '''Fulfill with the item promises once every one of them has settled.'''
        if not is_collection(items):
            items = [items]
        promises = [item if is_promise(item) else Promise.resolve(item) for item in items]

        def wait(resolve, reject):
            remaining = len(promises)

            def done(_):
                nonlocal remaining
                remaining -= 1
                if remaining == 0:
                    resolve(promises)

            for promise in promises:
                promise.then(done, done)

            if not promises:
                resolve(promises)

        return Promise(wait)


class Deferred:
    '''
    The producer side of a promise.

    Attributes:
        promise (Promise): the promise this Deferred settles.
        resolve (function)
        reject (function)
    '''

    def __init__(self):
        self.promise = Promise(self._executor)

    def _executor(self, resolve, reject):
        self.resolve = resolve
        self.reject = reject
