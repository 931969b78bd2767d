from atas.db.session import SessionLocal
from atas.etl.client import ComprasClient
from atas.etl.coordinator import SyncCoordinator


def reset_database(session_factory=SessionLocal):
    print("Connecting to database..")
    client = ComprasClient()
    try:
        deleted = SyncCoordinator(client, session_factory).reset_data()
    finally:
        client.close()
    print(f"Database is reset: {deleted}")
    return deleted

if __name__ == "__main__":
    reset_database()
