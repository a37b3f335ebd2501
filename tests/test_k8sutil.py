from promshard.k8sutil import is_pod_ready


def test_is_pod_ready():
    pod = {}
    assert is_pod_ready(pod) is False
    pod["status"] = {"conditions": [{"type": "Ready", "status": "True"}]}
    assert is_pod_ready(pod) is True


def test_pod_not_ready_when_condition_false():
    pod = {"status": {"conditions": [{"type": "Ready", "status": "False"}]}}
    assert is_pod_ready(pod) is False


def test_other_conditions_do_not_count():
    pod = {"status": {"conditions": [{"type": "Initialized", "status": "True"}]}}
    assert is_pod_ready(pod) is False