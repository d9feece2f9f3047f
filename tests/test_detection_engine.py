import unittest
from dataclasses import replace

from swarmid.core.ant_colony import AntColonyDetector
from swarmid.core.bee_colony import BeeColonyDetector
from swarmid.core.config import default_configuration
from swarmid.core.detection_engine import DetectionEngine, available_algorithms, create_detector
from swarmid.core.particle_swarm import ParticleSwarmDetector
from swarmid.core.types import AnomalyStatus, AnomalyType, InvalidArgumentError

from traffic_fixtures import RecordingRepository, ddos_batch, port_scan_batch


class CreateDetectorTest(unittest.TestCase):
    def test_available_algorithms(self):
        self.assertEqual(available_algorithms(), ["ACO", "BEE", "PSO"])

    def test_create_each_algorithm(self):
        repository = RecordingRepository()
        self.assertIsInstance(create_detector("aco", repository), AntColonyDetector)
        self.assertIsInstance(create_detector("BEE", repository, seed=1), BeeColonyDetector)
        self.assertIsInstance(create_detector("Pso", repository, seed=1), ParticleSwarmDetector)

    def test_unknown_algorithm(self):
        with self.assertRaises(InvalidArgumentError):
            create_detector("GA", RecordingRepository())


class DetectionEngineTest(unittest.TestCase):
    def setUp(self):
        self.repository = RecordingRepository()
        self.engine = DetectionEngine(self.repository, algorithm="ACO", seed=9)

    def test_requires_repository(self):
        with self.assertRaises(InvalidArgumentError):
            DetectionEngine(None)

    def test_new_anomaly_is_saved(self):
        anomaly = self.engine.analyze(port_scan_batch())
        self.assertEqual(anomaly.type, AnomalyType.PORT_SCAN)
        self.assertEqual(anomaly.status, AnomalyStatus.NEW)
        self.assertEqual(self.repository.saved, [anomaly])

    def test_normal_result_not_saved(self):
        anomaly = self.engine.analyze([])
        self.assertEqual(anomaly.type, AnomalyType.NORMAL)
        self.assertEqual(self.repository.saved, [])

    def test_below_threshold_result_is_saved_for_feedback(self):
        config = replace(default_configuration("ACO"), anomaly_threshold=95)
        engine = DetectionEngine(self.repository, algorithm="ACO", configuration=config)
        anomaly = engine.analyze(port_scan_batch())
        self.assertEqual(anomaly.type, AnomalyType.PORT_SCAN)
        self.assertEqual(anomaly.status, AnomalyStatus.FALSE_POSITIVE)
        self.assertEqual(self.repository.saved, [anomaly])

        result = engine.submit_feedback(anomaly.id, True)
        self.assertEqual(result.status, AnomalyStatus.CONFIRMED)
        self.assertEqual(self.repository.updated, [anomaly])
        self.assertEqual(engine.get_performance()["saved_anomalies"], 1)

    def test_switch_algorithm(self):
        self.assertTrue(self.engine.switch_algorithm("bee"))
        self.assertEqual(self.engine.current_algorithm, "BEE")
        self.assertIsInstance(self.engine.detector, BeeColonyDetector)
        self.assertEqual(len(self.engine.switch_history), 1)
        self.assertEqual(self.engine.switch_history[0]["from"], "ACO")

    def test_switch_to_unknown_algorithm_keeps_detector(self):
        detector = self.engine.detector
        self.assertFalse(self.engine.switch_algorithm("GA"))
        self.assertIs(self.engine.detector, detector)
        self.assertEqual(self.engine.current_algorithm, "ACO")
        self.assertEqual(self.engine.switch_history, [])

    def test_every_algorithm_flags_ddos(self):
        for algorithm in available_algorithms():
            self.engine.switch_algorithm(algorithm)
            anomaly = self.engine.analyze(ddos_batch(150))
            self.assertEqual(anomaly.type, AnomalyType.DDOS, algorithm)
            self.assertGreaterEqual(anomaly.score, 50, algorithm)
        self.assertEqual(len(self.repository.saved), 3)

    def test_submit_feedback(self):
        anomaly = self.engine.analyze(port_scan_batch())
        result = self.engine.submit_feedback(anomaly.id, True, note="known scanner")
        self.assertIs(result, anomaly)
        self.assertEqual(result.status, AnomalyStatus.CONFIRMED)
        self.assertEqual(result.analyst_feedback, "known scanner")
        self.assertEqual(self.repository.updated, [anomaly])

    def test_submit_feedback_unknown_id(self):
        self.assertIsNone(self.engine.submit_feedback("missing", False))
        self.assertEqual(self.repository.updated, [])

    def test_performance(self):
        anomaly = self.engine.analyze(port_scan_batch())
        self.engine.analyze([])
        self.engine.submit_feedback(anomaly.id, False)

        performance = self.engine.get_performance()
        self.assertEqual(performance["current_algorithm"], "ACO")
        self.assertEqual(performance["total_detections"], 2)
        self.assertEqual(performance["saved_anomalies"], 1)
        self.assertEqual(performance["confirmed"], 0)
        self.assertEqual(performance["false_positives"], 1)
        self.assertAlmostEqual(performance["detection_rate"], 0.5)


if __name__ == "__main__":
    unittest.main()
