from issuecascade.hierarchy import HierarchyCollector
from issuecascade.models import IssueRef


def _ref(number: int, repo: str = "widgets") -> IssueRef:
    return IssueRef("acme", repo, number)


def _index(client):
    return {item.ref.key: item for item in client.items}


def _three_levels(client):
    for n in (1, 2, 3, 4):
        client.add_item(n)
    client.link(_ref(1), 2, 3)
    client.link(_ref(2), 4)


def test_depth_zero_returns_nothing(fake_client):
    _three_levels(fake_client)
    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1), 0)
    assert result.nodes == []
    assert fake_client.calls["get_sub_issues_batch"] == 0


def test_depth_bound_is_never_exceeded(fake_client):
    _three_levels(fake_client)
    collector = HierarchyCollector(fake_client, _index(fake_client))
    for max_depth in (1, 2, 5):
        result = collector.collect(_ref(1), max_depth)
        assert all(node.depth <= max_depth for node in result.nodes)

    shallow = collector.collect(_ref(1), 1)
    assert [(n.number, n.depth) for n in shallow.nodes] == [(2, 1), (3, 1)]


def test_one_batch_call_per_level(fake_client):
    _three_levels(fake_client)
    fake_client.calls.clear()
    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1), 10)
    # levels: {1}, {2, 3}, {4}
    assert fake_client.calls["get_sub_issues_batch"] == 3
    assert result.batch_calls == 3
    assert [(n.number, n.depth) for n in result.nodes] == [(2, 1), (3, 1), (4, 2)]
    second_level = fake_client.call_log[1][1]
    assert second_level == ("acme", "widgets", [2, 3])


def test_children_grouped_by_repository(fake_client):
    fake_client.add_item(1)
    fake_client.add_item(10, repo="gadgets")
    fake_client.add_item(2)
    fake_client.link(_ref(1), _ref(10, "gadgets"), 2)
    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1), 2)
    assert [n.ref for n in result.nodes] == [_ref(10, "gadgets"), _ref(2)]
    level_two = [payload for name, payload in fake_client.call_log[1:]]
    assert level_two == [("acme", "gadgets", [10]), ("acme", "widgets", [2])]


def test_child_inherits_parent_repository(fake_client):
    fake_client.add_item(1, repo="gadgets")
    fake_client.add_item(2, repo="gadgets")
    fake_client.link(_ref(1, "gadgets"), 2)
    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1, "gadgets"), 1)
    assert result.nodes[0].ref == _ref(2, "gadgets")
    assert result.nodes[0].tracked


def test_untracked_children_are_reported_without_item_id(fake_client):
    fake_client.add_item(1)
    fake_client.link(_ref(1), 5)
    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1), 1)
    assert len(result.nodes) == 1
    assert not result.nodes[0].tracked
    assert result.untracked == result.nodes


def test_batch_failure_is_a_warning_and_stops_that_branch(fake_client):
    fake_client.add_item(1)
    fake_client.add_item(10, repo="gadgets")
    fake_client.add_item(2)
    fake_client.add_item(3)
    fake_client.add_item(11, repo="gadgets")
    fake_client.link(_ref(1), _ref(10, "gadgets"), 2)
    fake_client.link(_ref(2), 3)
    fake_client.link(_ref(10, "gadgets"), _ref(11, "gadgets"))
    fake_client.failing_sub_issue_repos.add("acme/gadgets")

    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1), 5)
    numbers = [n.number for n in result.nodes]
    assert numbers == [10, 2, 3]
    assert len(result.warnings) == 1
    assert "acme/gadgets" in result.warnings[0]


def test_cycles_terminate_at_depth_bound(fake_client):
    fake_client.add_item(1)
    fake_client.add_item(2)
    fake_client.link(_ref(1), 2)
    fake_client.link(_ref(2), 1)
    result = HierarchyCollector(fake_client, _index(fake_client)).collect(_ref(1), 4)
    assert [(n.number, n.depth) for n in result.nodes] == [(2, 1), (1, 2), (2, 3), (1, 4)]
    assert fake_client.calls["get_sub_issues_batch"] == 4
