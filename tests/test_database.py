import os
import tempfile
import unittest
from datetime import datetime, timedelta

from swarmid.core.database import AnomalyFilter, AnomalyRepository
from swarmid.core.types import Anomaly, AnomalyStatus, AnomalyType

START = datetime(2024, 1, 1, 12, 0, 0)


def make_anomaly(minutes=0, type=AnomalyType.PORT_SCAN, status=AnomalyStatus.NEW, algorithm="Bee Algorithm"):
    return Anomaly(
        type=type,
        score=80.0,
        description=f"{type.value} at +{minutes}m",
        status=status,
        algorithm=algorithm,
        configuration_used="Default Bee Configuration",
        source_ips=["192.168.1.50"],
        destination_ips=["192.168.1.10"],
        ports=[22, 80],
        detected_at=START + timedelta(minutes=minutes),
    )


class AnomalyRepositoryTest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.repository = AnomalyRepository(os.path.join(self.tmp.name, "db", "anomalies.db"))

    def tearDown(self):
        self.tmp.cleanup()

    def test_save_and_get(self):
        anomaly = make_anomaly()
        self.repository.save(anomaly)
        loaded = self.repository.get_by_id(anomaly.id)
        self.assertEqual(loaded, anomaly)
        self.assertIsNone(self.repository.get_by_id("missing"))

    def test_save_is_upsert(self):
        anomaly = make_anomaly()
        self.repository.save(anomaly)
        anomaly.score = 95.0
        self.repository.save(anomaly)
        self.assertEqual(self.repository.count(), 1)
        self.assertEqual(self.repository.get_by_id(anomaly.id).score, 95.0)

    def test_update(self):
        anomaly = make_anomaly()
        self.repository.save(anomaly)
        anomaly.status = AnomalyStatus.CONFIRMED
        anomaly.analyst_feedback = "verified"
        self.assertTrue(self.repository.update(anomaly))

        loaded = self.repository.get_by_id(anomaly.id)
        self.assertEqual(loaded.status, AnomalyStatus.CONFIRMED)
        self.assertEqual(loaded.analyst_feedback, "verified")

    def test_update_unknown_is_noop(self):
        self.assertFalse(self.repository.update(make_anomaly()))
        self.assertEqual(self.repository.count(), 0)

    def test_list_newest_first_and_filters(self):
        self.repository.save(make_anomaly(0))
        self.repository.save(make_anomaly(10, type=AnomalyType.DDOS, algorithm="Ant Colony Optimization"))
        self.repository.save(make_anomaly(20, status=AnomalyStatus.FALSE_POSITIVE))

        items = self.repository.list()
        self.assertEqual([a.detected_at for a in items],
                         [START + timedelta(minutes=m) for m in (20, 10, 0)])

        self.assertEqual(len(self.repository.list(AnomalyFilter(type=AnomalyType.DDOS))), 1)
        self.assertEqual(len(self.repository.list(AnomalyFilter(status=AnomalyStatus.NEW))), 2)
        self.assertEqual(len(self.repository.list(AnomalyFilter(algorithm="Bee Algorithm"))), 2)
        window = AnomalyFilter(start=START + timedelta(minutes=5), end=START + timedelta(minutes=15))
        self.assertEqual(len(self.repository.list(window)), 1)
        self.assertEqual(len(self.repository.list(AnomalyFilter(limit=1, offset=1))), 1)
        self.assertEqual(len(self.repository.list(AnomalyFilter(offset=2))), 1)

    def test_pagination(self):
        for minutes in range(7):
            self.repository.save(make_anomaly(minutes))

        first = self.repository.page(page=1, page_size=3)
        self.assertEqual(len(first.items), 3)
        self.assertEqual(first.total_count, 7)
        self.assertEqual(first.total_pages, 3)
        self.assertFalse(first.has_previous)
        self.assertTrue(first.has_next)

        last = self.repository.page(page=3, page_size=3)
        self.assertEqual(len(last.items), 1)
        self.assertTrue(last.has_previous)
        self.assertFalse(last.has_next)

    def test_delete(self):
        anomaly = make_anomaly()
        self.repository.save(anomaly)
        self.assertTrue(self.repository.delete(anomaly.id))
        self.assertFalse(self.repository.delete(anomaly.id))
        self.assertIsNone(self.repository.get_by_id(anomaly.id))


if __name__ == "__main__":
    unittest.main()
