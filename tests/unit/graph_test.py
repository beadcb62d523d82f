"""Unit tests for the resource dependency graph."""

import copy

import pytest

from backstage_gitops.graph import (
    ResourceGraph,
    ResourceIntent,
    diff_graphs,
)


@pytest.fixture
def network_template():
    """A small template shaped like the platform network."""
    return {
        "Resources": {
            "Vpc": {"Type": "AWS::EC2::VPC", "Properties": {"CidrBlock": "10.0.0.0/24"}},
            "InternetGateway": {"Type": "AWS::EC2::InternetGateway"},
            "Attachment": {
                "Type": "AWS::EC2::VPCGatewayAttachment",
                "Properties": {
                    "VpcId": {"Ref": "Vpc"},
                    "InternetGatewayId": {"Ref": "InternetGateway"},
                },
            },
            "RouteTable": {
                "Type": "AWS::EC2::RouteTable",
                "Properties": {"VpcId": {"Ref": "Vpc"}},
            },
            "DefaultRoute": {
                "Type": "AWS::EC2::Route",
                "Properties": {
                    "RouteTableId": {"Ref": "RouteTable"},
                    "GatewayId": {"Ref": "InternetGateway"},
                },
                "DependsOn": "Attachment",
            },
            "Subnet": {
                "Type": "AWS::EC2::Subnet",
                "Properties": {
                    "VpcId": {"Fn::GetAtt": ["Vpc", "VpcId"]},
                    "Tags": [{"Key": "Name", "Value": {"Fn::Sub": "${AWS::StackName}-subnet"}}],
                },
            },
            "Association": {
                "Type": "AWS::EC2::SubnetRouteTableAssociation",
                "Properties": {
                    "SubnetId": {"Ref": "Subnet"},
                    "RouteTableId": {"Fn::Sub": "${RouteTable}"},
                },
            },
        },
        "Outputs": {"VpcId": {"Value": {"Ref": "Vpc"}}},
    }


def _position(order, logical_id):
    return order.index(logical_id)


class TestFromTemplate:
    """Test building graphs from synthesized templates."""

    def test_reference_edges(self, network_template):
        """Test that Ref, GetAtt and Sub references become edges."""
        graph = ResourceGraph.from_template(network_template)

        assert graph.dependencies_of("Attachment") == {"Vpc", "InternetGateway"}
        assert graph.dependencies_of("Subnet") == {"Vpc"}
        assert graph.dependencies_of("Association") == {"Subnet", "RouteTable"}

    def test_depends_on_edges(self, network_template):
        """Test that explicit DependsOn becomes an edge next to references."""
        graph = ResourceGraph.from_template(network_template)

        assert graph.dependencies_of("DefaultRoute") == {
            "RouteTable",
            "InternetGateway",
            "Attachment",
        }

    def test_pseudo_parameters_ignored(self, network_template):
        """Test that references to pseudo parameters add no edges."""
        graph = ResourceGraph.from_template(network_template)
        assert "AWS::StackName" not in graph

    def test_depends_on_list(self):
        """Test that DependsOn may be a list."""
        graph = ResourceGraph.from_template(
            {
                "Resources": {
                    "A": {"Type": "Test::A"},
                    "B": {"Type": "Test::B"},
                    "C": {"Type": "Test::C", "DependsOn": ["A", "B"]},
                }
            }
        )
        assert graph.dependencies_of("C") == {"A", "B"}

    def test_empty_template(self):
        """Test that a template without resources gives an empty graph."""
        graph = ResourceGraph.from_template({})
        assert len(graph) == 0
        assert graph.levels() == []


class TestApplyOrder:
    """Test topological evaluation of the graph."""

    def test_dependencies_first(self, network_template):
        """Test that every resource comes after what it depends on."""
        graph = ResourceGraph.from_template(network_template)
        order = graph.apply_order()

        assert len(order) == len(graph)
        for logical_id in order:
            for dependency in graph.dependencies_of(logical_id):
                assert _position(order, dependency) < _position(order, logical_id)

    def test_default_route_after_gateway_attachment(self, network_template):
        """Test that the default route waits for the gateway attachment."""
        order = ResourceGraph.from_template(network_template).apply_order()
        assert _position(order, "Attachment") < _position(order, "DefaultRoute")

    def test_levels(self, network_template):
        """Test grouping into independent batches."""
        levels = ResourceGraph.from_template(network_template).levels()

        assert levels[0] == ["InternetGateway", "Vpc"]
        assert levels[1] == ["Attachment", "RouteTable", "Subnet"]
        assert levels[2] == ["Association", "DefaultRoute"]

    def test_order_is_deterministic(self, network_template):
        """Test that repeated evaluation yields the same order."""
        first = ResourceGraph.from_template(network_template).apply_order()
        second = ResourceGraph.from_template(network_template).apply_order()
        assert first == second

    def test_cycle_rejected(self):
        """Test that a dependency cycle is reported as an error."""
        graph = ResourceGraph(
            [
                ResourceIntent("A", "Test::A", frozenset({"B"})),
                ResourceIntent("B", "Test::B", frozenset({"A"})),
            ]
        )
        with pytest.raises(ValueError) as exc_info:
            graph.levels()
        assert "Dependency cycle" in str(exc_info.value)


class TestResourceGraphValidation:
    """Test construction-time checks."""

    def test_duplicate_resource(self):
        """Test that a logical id may only be declared once."""
        with pytest.raises(ValueError) as exc_info:
            ResourceGraph([ResourceIntent("A", "Test::A"), ResourceIntent("A", "Test::B")])
        assert "Duplicate resource: A" in str(exc_info.value)

    def test_undeclared_dependency(self):
        """Test that edges must point at declared resources."""
        with pytest.raises(ValueError) as exc_info:
            ResourceGraph([ResourceIntent("A", "Test::A", frozenset({"Missing"}))])
        assert "undeclared resources: ['Missing']" in str(exc_info.value)


class TestDiffGraphs:
    """Test comparison of two graphs."""

    def test_identical_templates(self, network_template):
        """Test that the same declarations produce an empty diff."""
        diff = diff_graphs(
            ResourceGraph.from_template(network_template),
            ResourceGraph.from_template(network_template),
        )
        assert diff.is_empty

    def test_added_and_removed(self, network_template):
        """Test detection of new and deleted resources."""
        before = ResourceGraph.from_template(network_template)
        changed = copy.deepcopy(network_template)
        changed["Resources"].pop("Association")
        changed["Resources"]["Endpoint"] = {"Type": "AWS::EC2::VPCEndpoint"}
        after = ResourceGraph.from_template(changed)

        diff = diff_graphs(before, after)

        assert diff.added == ["Endpoint"]
        assert diff.removed == ["Association"]
        assert not diff.is_empty

    def test_changed_properties(self, network_template):
        """Test that a property change is reported."""
        before = ResourceGraph.from_template(network_template)
        changed = copy.deepcopy(network_template)
        changed["Resources"]["Vpc"]["Properties"]["CidrBlock"] = "10.1.0.0/24"
        after = ResourceGraph.from_template(changed)

        assert diff_graphs(before, after).changed == ["Vpc"]
