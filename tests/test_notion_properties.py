import unittest


def _text(value):
    return [{"type": "text", "plain_text": value}]


class DisplayValueTests(unittest.TestCase):
    def test_scalar_kinds(self):
        from app.services.notion_properties import display_value

        cases = [
            ({"type": "title", "title": _text("Ship it")}, "Ship it"),
            ({"type": "rich_text", "rich_text": _text("a") + _text("b")}, "ab"),
            ({"type": "number", "number": 3.0}, "3"),
            ({"type": "number", "number": 2.5}, "2.5"),
            ({"type": "select", "select": {"name": "High"}}, "High"),
            ({"type": "status", "status": {"name": "Done"}}, "Done"),
            (
                {"type": "multi_select", "multi_select": [{"name": "a"}, {"name": "b"}]},
                "a, b",
            ),
            ({"type": "checkbox", "checkbox": True}, "Yes"),
            ({"type": "checkbox", "checkbox": False}, "No"),
            ({"type": "url", "url": "https://example.com"}, "https://example.com"),
            ({"type": "email", "email": "a@example.com"}, "a@example.com"),
            ({"type": "phone_number", "phone_number": "555"}, "555"),
        ]
        for prop, expected in cases:
            with self.subTest(kind=prop["type"]):
                self.assertEqual(display_value(prop), expected)

    def test_date_range_and_people(self):
        from app.services.notion_properties import display_value

        self.assertEqual(
            display_value({"type": "date", "date": {"start": "2024-01-01", "end": "2024-01-05"}}),
            "2024-01-01 → 2024-01-05",
        )
        self.assertEqual(display_value({"type": "date", "date": {"start": "2024-01-01"}}), "2024-01-01")
        self.assertIsNone(display_value({"type": "date", "date": None}))
        people = {
            "type": "people",
            "people": [{"name": "Alice"}, {"person": {"email": "bob@example.com"}}, {}],
        }
        self.assertEqual(display_value(people), "Alice, bob@example.com, Unknown")

    def test_computed_kinds(self):
        from app.services.notion_properties import display_value

        self.assertEqual(
            display_value({"type": "relation", "relation": [{"id": "1"}, {"id": "2"}]}),
            "2 linked item(s)",
        )
        self.assertIsNone(display_value({"type": "relation", "relation": []}))
        self.assertEqual(display_value({"type": "rollup", "rollup": {"type": "number"}}), "(rollup data)")
        self.assertEqual(
            display_value({"type": "formula", "formula": {"type": "string", "string": "x"}}), "x"
        )
        self.assertEqual(
            display_value({"type": "formula", "formula": {"type": "number", "number": 4}}), "4"
        )
        self.assertEqual(
            display_value({"type": "formula", "formula": {"type": "boolean", "boolean": False}}), "No"
        )

    def test_unknown_or_malformed_kinds_yield_none(self):
        from app.services.notion_properties import display_value

        self.assertIsNone(display_value({"type": "button", "button": {}}))
        self.assertIsNone(display_value({"type": "files", "files": []}))
        self.assertIsNone(display_value({"type": "select", "select": "oops"}))
        self.assertIsNone(display_value(None))
        self.assertIsNone(display_value("text"))


class PropertyHelperTests(unittest.TestCase):
    def test_title_and_title_property_name(self):
        from app.services.notion_properties import title_of, title_property_name

        properties = {
            "Status": {"type": "status", "status": {"name": "Done"}},
            "Task name": {"type": "title", "title": _text("Write docs")},
        }
        self.assertEqual(title_of(properties), "Write docs")
        self.assertEqual(title_property_name(properties), "Task name")
        self.assertIsNone(title_of({"Task name": {"type": "title", "title": []}}))

    def test_status_of_accepts_status_or_select(self):
        from app.services.notion_properties import status_of

        self.assertEqual(status_of({"type": "status", "status": {"name": "Done"}}), "Done")
        self.assertEqual(status_of({"type": "select", "select": {"name": "Doing"}}), "Doing")
        self.assertIsNone(status_of({"type": "select", "select": None}))
        self.assertIsNone(status_of({"type": "rich_text", "rich_text": _text("Done")}))
        self.assertIsNone(status_of(None))

    def test_first_person_email_and_ids(self):
        from app.services.notion_properties import first_person_email, relation_ids, text_or_number_of

        people = {
            "type": "people",
            "people": [{"person": {"email": "a@example.com"}}, {"person": {"email": "b@example.com"}}],
        }
        self.assertEqual(first_person_email(people), "a@example.com")
        self.assertIsNone(first_person_email({"type": "people", "people": []}))
        self.assertEqual(relation_ids({"type": "relation", "relation": [{"id": "x"}, {}]}), ["x"])
        self.assertEqual(text_or_number_of({"type": "number", "number": 42}), "42")
        self.assertEqual(text_or_number_of({"type": "rich_text", "rich_text": _text("17")}), "17")


if __name__ == "__main__":
    unittest.main()
