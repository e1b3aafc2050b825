from db import local_engine
from entry_form import EntryForm
from repository import EntryRepository
from storage import LocalStore, StorageAdapter


def seed_database(store: StorageAdapter | None = None) -> int:
    """Seed a store with sample students, zones and one logged period.

    Returns the number of entries written, 0 if the store already had data.
    """
    store = store or LocalStore(local_engine)

    # Check if data already exists
    if store.list("students"):
        print("Store already has data, skipping seed.")
        return 0

    alice = store.create("students", {"name": "Alice Johnson"})
    bob = store.create("students", {"name": "Bob Smith"})
    carol = store.create("students", {"name": "Carol Davis"})
    dan = store.create("students", {"name": "Dan Evans"})

    quiet_corner = store.create("zones", {"name": "Quiet Corner", "category": "Focus"})
    store.create("zones", {"name": "Pod Tables", "category": "Semi-Collaborative"})
    store.create("zones", {"name": "Project Lab", "category": "Collaborative"})

    form = EntryForm(date="2024-01-15", period=4)  # Monday
    form = form.set_fields(alice, {"type": "Study", "zone_id": quiet_corner, "used_study_planner": True})
    form = form.set_fields(bob, {"type": "Class", "zone_id": quiet_corner, "action": "Coached"})
    form = form.set_fields(carol, {"type": "Enrichment", "notes": "Robotics club"})
    form = form.set_fields(dan, {"type": "Absent"})

    count = EntryRepository(store).append_entries(form.build_submission([alice, bob, carol, dan]))
    print(f"Seeded store with 4 students, 3 zones and {count} sample entries.")
    return count


if __name__ == "__main__":
    from db import create_db_and_tables

    create_db_and_tables(local_engine)
    seed_database()
