# -*- coding: utf-8 -*-
"""
This modules purpose is to test the consumers of leased secrets: flattening,
live property sources, managed secrets and the injection decorators

"""
import logging
import threading
import unittest

from secret_lease_manager import *


def setup_module():
    logging.basicConfig(level=logging.DEBUG)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestFlatten(unittest.TestCase):

    def test_nested_documents(self):
        self.assertEqual(flatten({"db": {"user": "app", "hosts": ["a", {"port": 5432}]},
                                  "debug": True,
                                  "timeout": None}),
                         {"db.user": "app",
                          "db.hosts[0]": "a",
                          "db.hosts[1].port": 5432,
                          "debug": True,
                          "timeout": None})

    def test_nested_lists(self):
        self.assertEqual(flatten({"matrix": [[1, 2], [3]]}),
                         {"matrix[0][0]": 1, "matrix[0][1]": 2, "matrix[1][0]": 3})

    def test_empty_containers_vanish(self):
        self.assertEqual(flatten({"a": {}, "b": [], "c": 1}), {"c": 1})
        self.assertEqual(flatten({}), {})

    def test_flat_maps_are_unchanged(self):
        source = {"username": "u", "password": "p"}
        self.assertEqual(flatten(source), source)
        self.assertEqual(flatten(flatten({"a": {"b": [1]}})), {"a.b[0]": 1})

    def test_top_level_keys_are_kept(self):
        self.assertEqual(flatten({1: "x", None: "y"}), {1: "x", None: "y"})
        self.assertEqual(flatten({1: {2: "x"}, 3: ["y"]}), {"1.2": "x", "3[0]": "y"})

    def test_requires_mapping(self):
        with self.assertRaises(AssertionError):
            flatten(["a"])


class PropertySourceTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.backend = InMemorySecretBackend()
        self.scheduler = LeaseRenewalScheduler(self.backend, clock=self.clock)

    def tearDown(self):
        self.scheduler.stop()

    def advance(self, now):
        self.clock.now = now
        return self.scheduler.run_pending()


class TestLeaseAwareSecretPropertySource(PropertySourceTestCase):

    def test_exposes_flattened_secret(self):
        self.backend.write("kv/app", {"db": {"user": "app", "hosts": ["a", "b"]}}, lease_duration=30)

        source = LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/app"))

        self.assertEqual(source.name, "kv/app")
        self.assertEqual(source["db.user"], "app")
        self.assertEqual(source.get_property("db.hosts[1]"), "b")
        self.assertIsNone(source.get_property("db.password"))
        self.assertEqual(source.get_property("db.password", "default"), "default")
        self.assertIn("db.hosts[0]", source)
        self.assertEqual(len(source), 3)
        self.assertEqual(sorted(source.property_names()), ["db.hosts[0]", "db.hosts[1]", "db.user"])

    def test_rotation_replaces_properties_and_drops_stale_keys(self):
        self.backend.write("database/creds/app", {"username": "u1", "password": "p1", "old": "x"},
                           lease_duration=10, renewable=False)
        source = LeaseAwareSecretPropertySource(self.scheduler,
                                                RequestedSecret.rotating("database/creds/app"))
        self.backend.write("database/creds/app", {"username": "u2", "password": "p2"},
                           lease_duration=10, renewable=False)

        self.advance(8.0)

        self.assertEqual(source.snapshot(), {"username": "u2", "password": "p2"})
        self.assertNotIn("old", source)

    def test_renewal_keeps_properties(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        source = LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/app"))
        self.backend.write("kv/app", {"password": "changed"}, lease_duration=30)

        self.advance(24.0)

        self.assertEqual(self.backend.renewals, ["kv/app/1"])
        self.assertEqual(source["password"], "s3cret")

    def test_fallback_read_replaces_properties(self):
        self.backend.write("kv/app", {"password": "s3cret", "user": "u"}, lease_duration=30)
        source = LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/app"))
        self.backend.write("kv/app", {"password": "n3w"}, lease_duration=30)
        self.backend.expire_lease("kv/app/1")

        self.advance(24.0)

        self.assertEqual(source.snapshot(), {"password": "n3w"})

    def test_expiry_clears_properties(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        source = LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.once("kv/app"))

        self.advance(30.0)

        self.assertEqual(len(source), 0)
        with self.assertRaises(KeyError):
            source["password"]

    def test_errors_keep_properties(self):
        self.backend.write("database/creds/app", {"username": "u1"},
                           lease_duration=10, renewable=False)
        source = LeaseAwareSecretPropertySource(self.scheduler,
                                                RequestedSecret.rotating("database/creds/app"))
        self.backend.delete("database/creds/app")

        self.advance(8.0)

        self.assertEqual(source["username"], "u1")

    def test_ignores_other_secrets(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        self.backend.write("kv/other", {"password": "other"}, lease_duration=10)
        source = LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/app"))
        self.scheduler.add_requested_secret(RequestedSecret.once("kv/other"))
        self.scheduler.add_requested_secret(RequestedSecret.once("kv/app"))

        self.advance(10.0)
        self.advance(30.0)

        self.assertEqual(source.snapshot(), {"password": "s3cret"})

    def test_missing_secret_fails(self):
        with self.assertRaises(SecretNotFoundError):
            LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/missing"))

        self.assertEqual(self.scheduler._lease_listeners, ())
        self.assertEqual(self.scheduler._error_listeners, ())

    def test_missing_secret_can_be_ignored(self):
        source = LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/missing"),
                                                name="optional", ignore_secret_not_found=True)

        self.assertEqual(source.name, "optional")
        self.assertEqual(len(source), 0)

    def test_read_failure_before_start_is_raised(self):
        secret = RequestedSecret.renewable("kv/app")
        self.backend.read = self._failing_read

        with self.assertRaises(BackendError):
            LeaseAwareSecretPropertySource(self.scheduler, secret)

        self.assertEqual(self.scheduler._lease_listeners, ())

    def test_read_failure_after_start_is_wrapped(self):
        self.scheduler.start()
        self.backend.read = self._failing_read

        with self.assertRaises(SecretLeaseError) as context:
            LeaseAwareSecretPropertySource(self.scheduler, RequestedSecret.renewable("kv/app"))

        self.assertIsInstance(context.exception.__cause__, BackendError)
        self.assertEqual(self.scheduler._error_listeners, ())

    @staticmethod
    def _failing_read(path):
        raise BackendError(f"cannot read {path}")

    def test_shares_secret_registered_earlier(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        secret = RequestedSecret.renewable("kv/app")
        first = LeaseAwareSecretPropertySource(self.scheduler, secret)

        second = LeaseAwareSecretPropertySource(self.scheduler, secret, name="second")

        self.assertEqual(second.snapshot(), first.snapshot())
        self.assertEqual(self.backend.reads, ["kv/app"])

    def test_errors_from_other_threads_do_not_fail_construction(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        secret = RequestedSecret.renewable("kv/app")
        lease = self.scheduler.add_requested_secret(secret)
        add_requested_secret = self.scheduler.add_requested_secret

        def add_while_sweep_fails(requested_secret):
            # the sweep thread reports a failed renewal of the same secret meanwhile
            sweep = threading.Thread(target=self.scheduler.publish,
                                     args=[SecretLeaseEvent.failed(requested_secret, lease,
                                                                   BackendError("down"))])
            sweep.start()
            sweep.join(5.0)
            return add_requested_secret(requested_secret)

        self.scheduler.add_requested_secret = add_while_sweep_fails

        source = LeaseAwareSecretPropertySource(self.scheduler, secret)

        self.assertEqual(source.snapshot(), {"password": "s3cret"})

    def test_prefix_transformer(self):
        self.backend.write("database/creds/app", {"username": "u1", "password": "p1"},
                           lease_duration=10, renewable=False)

        source = LeaseAwareSecretPropertySource(self.scheduler,
                                                RequestedSecret.rotating("database/creds/app"),
                                                property_transformer=prefix_transformer("spring.datasource."))

        self.assertEqual(source.snapshot(), {"spring.datasource.username": "u1",
                                             "spring.datasource.password": "p1"})

    def test_close_removes_secret(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        secret = RequestedSecret.renewable("kv/app")
        source = LeaseAwareSecretPropertySource(self.scheduler, secret)

        source.close()

        self.assertEqual(len(source), 0)
        self.assertIsNone(self.scheduler.get_lease(secret))
        self.assertEqual(self.backend.revocations, ["kv/app/1"])
        self.assertEqual(self.scheduler._lease_listeners, ())

    def test_close_keeping_secret(self):
        self.backend.write("kv/app", {"password": "s3cret"}, lease_duration=30)
        secret = RequestedSecret.renewable("kv/app")
        source = LeaseAwareSecretPropertySource(self.scheduler, secret)

        source.close(remove_secret=False)

        self.assertIsNotNone(self.scheduler.get_lease(secret))
        self.assertEqual(self.backend.revocations, [])


class TestManagedSecret(PropertySourceTestCase):

    def setUp(self):
        super(TestManagedSecret, self).setUp()
        self.backend.write("database/creds/app", {"username": "u1", "port": "5432"},
                           lease_duration=10, renewable=False)
        self.received = []
        self.errors = []

    def test_consumer_receives_every_version(self):
        ManagedSecret.rotating("database/creds/app", self.received.append,
                               self.errors.append).register(self.scheduler)
        self.backend.write("database/creds/app", {"username": "u2", "port": "5432"},
                           lease_duration=10, renewable=False)

        self.advance(8.0)

        self.assertEqual([accessor.get_string("username") for accessor in self.received], ["u1", "u2"])
        self.assertEqual(self.received[1].get_int("port"), 5432)
        self.assertEqual(self.errors, [])

    def test_consumer_failures_go_to_error_consumer(self):
        def failing_consumer(accessor):
            raise ValueError("cannot reconfigure")

        ManagedSecret.rotating("database/creds/app", failing_consumer,
                               self.errors.append).register(self.scheduler)

        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], ValueError)

    def test_lease_errors_go_to_error_consumer(self):
        managed = ManagedSecret.rotating("database/creds/app", self.received.append,
                                         self.errors.append).register(self.scheduler)
        self.backend.delete("database/creds/app")

        self.advance(8.0)

        self.assertEqual(managed.requested_secret, RequestedSecret.rotating("database/creds/app"))
        self.assertEqual(len(self.received), 1)
        self.assertIsInstance(self.errors[0], SecretNotFoundError)

    def test_default_error_consumer_logs(self):
        ManagedSecret.rotating("database/creds/app", self.received.append).register(self.scheduler)
        self.backend.delete("database/creds/app")

        with self.assertLogs("secret_lease_manager.managed", level="ERROR"):
            self.advance(8.0)


class TestSecretAccessor(unittest.TestCase):

    def setUp(self):
        self.accessor = SecretAccessor({"username": "u", "port": "5432", "pool": 10, "empty": None})

    def test_get(self):
        self.assertEqual(self.accessor.get("username"), "u")
        self.assertIsNone(self.accessor.get("missing"))
        self.assertEqual(self.accessor.get("empty", "fallback"), "fallback")
        self.assertEqual(self.accessor.get("pool", expected_type=int), 10)
        with self.assertRaises(TypeError):
            self.accessor.get("pool", expected_type=str)

    def test_get_required(self):
        self.assertEqual(self.accessor.get_required("username"), "u")
        with self.assertRaises(KeyError):
            self.accessor.get_required("missing")

    def test_conversions(self):
        self.assertEqual(self.accessor.get_int("port"), 5432)
        self.assertIsNone(self.accessor.get_int("missing"))
        self.assertEqual(self.accessor.get_string("missing", "none"), "none")
        self.assertEqual(self.accessor.as_dict()["pool"], 10)


class TestDecorators(PropertySourceTestCase):

    def setUp(self):
        super(TestDecorators, self).setUp()
        self.backend.write("database/creds/app", {"username": "u1", "password": "p1"},
                           lease_duration=10, renewable=False)
        self.source = LeaseAwareSecretPropertySource(self.scheduler,
                                                     RequestedSecret.rotating("database/creds/app"))

    def test_simple_decorator_follows_rotation(self):
        @InjectSecretValue(self.source, "password")
        def connect(password, host, port=5432):
            """Connect to the database"""
            return password, host, port

        self.assertEqual(connect("db.example.com"), ("p1", "db.example.com", 5432))
        self.assertEqual(connect.__doc__, "Connect to the database")

        self.backend.write("database/creds/app", {"username": "u2", "password": "p2"},
                           lease_duration=10, renewable=False)
        self.advance(8.0)

        self.assertEqual(connect("db.example.com", port=6432), ("p2", "db.example.com", 6432))

    def test_simple_decorator_missing_key(self):
        @InjectSecretValue(self.source, "token")
        def call(token):
            return token

        with self.assertRaises(RuntimeError):
            call()

    def test_keyword_decorator(self):
        @InjectKeywordedSecretValues(self.source, user="username", password="password")
        def connect(host, user=None, password=None, timeout=None):
            return host, user, password, timeout

        self.assertEqual(connect("db.example.com", timeout=3), ("db.example.com", "u1", "p1", 3))

        @InjectKeywordedSecretValues(self.source, token="token")
        def call(token=None):
            return token

        with self.assertRaises(RuntimeError):
            call()


if __name__ == '__main__':
    unittest.main()
