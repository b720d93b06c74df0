import unittest
from datetime import timedelta

from domain.errors import ConfigurationError
from domain.settings import DEFAULT_JOBS, EconomySettings, Job
from infrastructure.config import (
    load_admin_ids,
    load_settings,
    load_storage_settings,
    parse_jobs,
)


class EconomySettingsTests(unittest.TestCase):
    def test_defaults_are_valid(self):
        settings = EconomySettings().validate()
        self.assertEqual(settings.currency, "₦")
        self.assertEqual(settings.starting_balance, 1000)
        self.assertEqual(settings.work_cooldown, timedelta(minutes=60))
        self.assertEqual(settings.rob_cooldown, timedelta(minutes=120))
        self.assertEqual(len(settings.jobs), 6)
        self.assertEqual(str(settings.tzinfo), "Africa/Lagos")

    def test_invalid_values_are_collected(self):
        settings = EconomySettings(
            daily_min=2000,
            rob_success_rate=1.5,
            jobs=(Job("Broken", 500, 100),),
            timezone="Mars/Olympus",
        )
        problems = settings.issues()
        self.assertEqual(len(problems), 4)
        with self.assertRaises(ConfigurationError):
            settings.validate()


class LoadSettingsTests(unittest.TestCase):
    def test_empty_environment_gives_defaults(self):
        self.assertEqual(load_settings({}), EconomySettings())

    def test_overrides_are_parsed(self):
        settings = load_settings(
            {
                "ECONOMY_CURRENCY": "$",
                "ECONOMY_STARTING_BALANCE": "250",
                "ECONOMY_WORK_COOLDOWN_MINUTES": "30",
                "ECONOMY_ROB_SUCCESS_RATE": "0.5",
                "TIMEZONE": "UTC",
                "ECONOMY_DAILY_MAX": "",
            }
        )
        self.assertEqual(settings.currency, "$")
        self.assertEqual(settings.starting_balance, 250)
        self.assertEqual(settings.work_cooldown, timedelta(minutes=30))
        self.assertEqual(settings.rob_success_rate, 0.5)
        self.assertEqual(settings.timezone, "UTC")
        self.assertEqual(settings.daily_max, 1500)

    def test_bad_numbers_fail_fast(self):
        with self.assertRaises(ConfigurationError):
            load_settings({"ECONOMY_STARTING_BALANCE": "lots"})
        with self.assertRaises(ConfigurationError):
            load_settings({"ECONOMY_GAMBLE_MIN_BET": "-1"})

    def test_job_table_from_json(self):
        jobs = parse_jobs('[{"name": "Chef", "min": 80, "max": 230}]')
        self.assertEqual(jobs, (Job("Chef", 80, 230),))
        settings = load_settings({"ECONOMY_WORK_JOBS": '[{"name": "Chef", "min": 80, "max": 230}]'})
        self.assertEqual(settings.jobs, jobs)
        self.assertNotEqual(settings.jobs, DEFAULT_JOBS)
        with self.assertRaises(ConfigurationError):
            parse_jobs('[{"name": "Chef"}]')


class LoadStorageSettingsTests(unittest.TestCase):
    def test_sqlite_is_the_default(self):
        storage = load_storage_settings({})
        self.assertEqual(storage.backend, "sqlite")
        self.assertEqual(storage.sqlite_path, "economy.db")
        self.assertEqual(storage.timeout_seconds, 5.0)

    def test_postgres_from_url_or_parts(self):
        storage = load_storage_settings({"STORAGE_BACKEND": "Postgres", "DATABASE_URL": "postgres://x"})
        self.assertEqual(storage.postgres_params, {"dsn": "postgres://x"})

        storage = load_storage_settings(
            {"STORAGE_BACKEND": "postgres", "POSTGRES_HOST": "db", "POSTGRES_DBNAME": "eco"}
        )
        self.assertEqual(storage.postgres_params, {"host": "db", "dbname": "eco"})

    def test_postgres_without_connection_details(self):
        with self.assertRaises(ConfigurationError):
            load_storage_settings({"STORAGE_BACKEND": "postgres"})

    def test_unknown_backend(self):
        with self.assertRaises(ConfigurationError):
            load_storage_settings({"STORAGE_BACKEND": "mongodb"})

    def test_admin_ids(self):
        self.assertEqual(load_admin_ids({"ADMIN_IDS": " 12, 34 ,,"}), frozenset({"12", "34"}))
        self.assertEqual(load_admin_ids({}), frozenset())


if __name__ == "__main__":
    unittest.main()
