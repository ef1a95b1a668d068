from config import Config
from database import Store
from directory import Directory
from donations import DonationService
from drives import BloodDriveService
from ledger import InventoryLedger
from matcher import RequestMatcher


class BloodBank:
    """Wires every service to one database. Create one per process."""

    def __init__(self, database, config=Config):
        self.store = Store(database)
        self.store.ensure_indexes()
        self.directory = Directory(self.store)
        self.ledger = InventoryLedger(self.store, self.directory, config)
        self.matcher = RequestMatcher(self.store, self.directory, self.ledger)
        self.donations = DonationService(self.store, self.directory, self.ledger, config)
        self.drives = BloodDriveService(self.store, self.directory)

    def status(self) -> dict:
        """Document counts and index names for every collection the services own."""
        collections = {}
        for name in ("actors", "inventory", "requests", "donations", "drives"):
            collection = self.store.db[name]
            collections[name] = {
                "documents": collection.count_documents({}),
                "indexes": sorted(collection.index_information()),
            }
        return collections
