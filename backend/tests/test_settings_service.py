import unittest
from decimal import Decimal

from caja import create_app
from caja.errors import NotFoundError, ValidationError
from caja.extensions import db
from caja.models import LedgerEvent, Setting
from caja.services import settings_service


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "PRINT_SERVER_URL": "",
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(LedgerEvent).delete()
        db.session.query(Setting).delete()
        db.session.commit()

    def test_defaults_without_rows(self):
        self.assertEqual(settings_service.get_setting("tax_rate"), 8)
        self.assertTrue(settings_service.get_setting("tax_enabled"))
        self.assertEqual(settings_service.get_setting("currency"), "COP")
        names = [m["name"] for m in settings_service.get_setting("payment_methods")]
        self.assertEqual(names, ["CASH", "CARD", "TRANSFER"])

    def test_seed_only_missing_keys(self):
        settings_service.set_setting("tax_rate", 19, updated_by="admin")
        added = settings_service.ensure_defaults_seeded()
        self.assertEqual(added, len(settings_service.SETTINGS_CATALOG) - 1)
        self.assertEqual(settings_service.get_setting("tax_rate"), 19)
        self.assertEqual(settings_service.ensure_defaults_seeded(), 0)

    def test_bulk_update_is_all_or_nothing(self):
        with self.assertRaises(ValidationError):
            settings_service.set_settings({"tax_rate": 19, "tip_rate": 250}, updated_by="admin")
        self.assertEqual(settings_service.get_setting("tax_rate"), 8)
        self.assertEqual(db.session.query(Setting).count(), 0)

    def test_unknown_key(self):
        with self.assertRaises(NotFoundError):
            settings_service.set_settings({"theme": "dark"})
        with self.assertRaises(NotFoundError):
            settings_service.get_setting("theme")

    def test_update_writes_ledger_event(self):
        settings_service.set_settings({"tip_enabled": "off"}, updated_by="admin")
        self.assertFalse(settings_service.get_setting("tip_enabled"))
        event = db.session.query(LedgerEvent).filter_by(event_type="SETTING_UPDATED").one()
        self.assertEqual(event.actor_id, "admin")
        self.assertEqual(event.note, "tip_enabled")

    def test_decimal_rates(self):
        settings_service.set_setting("tax_rate", "8.5")
        self.assertEqual(settings_service.get_setting("tax_rate"), 8.5)
        for bad in (-1, 101, "abc", True, None):
            with self.assertRaises(ValidationError):
                settings_service.set_setting("tax_rate", bad)

    def test_currency_code(self):
        settings_service.set_setting("currency", "usd")
        self.assertEqual(settings_service.get_setting("currency"), "USD")
        with self.assertRaises(ValidationError):
            settings_service.set_setting("currency", "pesos")

    def test_payment_methods_are_normalized(self):
        settings_service.set_setting("payment_methods", [{"name": "cash"}, {"name": "nequi", "requires_reference": True}])
        methods = settings_service.get_setting("payment_methods")
        self.assertEqual(methods[1], {"name": "NEQUI", "enabled": True, "requires_reference": True})
        with self.assertRaises(ValidationError):
            settings_service.set_setting("payment_methods", [{"name": "CASH"}, {"name": "cash"}])

    def test_printers(self):
        settings_service.set_setting("printers", [{"name": "Cocina", "ip": "192.168.1.50"}])
        printer = settings_service.get_setting("printers")[0]
        self.assertEqual(printer["type"], "KITCHEN")
        self.assertEqual(printer["port"], 9100)
        with self.assertRaises(ValidationError):
            settings_service.set_setting("printers", [{"name": "Bar", "port": 70000}])
        with self.assertRaises(ValidationError):
            settings_service.set_setting("printers", [{"name": "Bar", "type": "LASER"}])

    def test_operating_hours(self):
        settings_service.set_setting("operating_hours", [{"day": "Monday", "open": "08:00", "close": "23:30"}])
        self.assertEqual(settings_service.get_setting("operating_hours")[0]["day"], "monday")
        with self.assertRaises(ValidationError):
            settings_service.set_setting("operating_hours", [{"day": "lunes", "open": "08:00", "close": "23:30"}])
        with self.assertRaises(ValidationError):
            settings_service.set_setting("operating_hours", [{"day": "monday", "open": "8am", "close": "23:30"}])

    def test_tax_policy(self):
        self.assertEqual(settings_service.get_tax_policy().effective_rate, Decimal("8"))
        settings_service.set_settings({"tax_enabled": False})
        self.assertEqual(settings_service.get_tax_policy().effective_rate, Decimal(0))


if __name__ == "__main__":
    unittest.main()
