"""Tests for actions.orphans."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from actions import ReportOrphansAction
from actions.orphans import cluster_tag_filter
from config import DriverConfig


@pytest.fixture
def config(tmp_path):
    return DriverConfig(environment='dev', cluster_name='obs', project_dir=tmp_path)


def _paginators(pages_by_operation):
    client = MagicMock()

    def _get(operation):
        paginator = MagicMock()
        paginator.paginate.return_value = pages_by_operation.get(operation, [{}])
        return paginator

    client.get_paginator.side_effect = _get
    return client


class TestReportOrphansAction:
    """Tests for ReportOrphansAction."""

    def test_nothing_left(self, config):
        action = ReportOrphansAction(elbv2_client=_paginators({}), ec2_client=_paginators({}))
        result = action.run(config, {})
        assert result.success
        assert result.message == 'No orphaned resources'
        assert result.context_updates['orphans'] == {
            'load_balancers': [], 'volumes': [], 'security_groups': []}

    def test_reports_leftovers(self, config):
        elbv2 = _paginators({'describe_load_balancers': [{'LoadBalancers': [
            {'LoadBalancerName': 'k8s-obs-grafana', 'LoadBalancerArn': 'arn:lb/1'},
            {'LoadBalancerName': 'unrelated', 'LoadBalancerArn': 'arn:lb/2'},
        ]}]})
        ec2 = _paginators({
            'describe_volumes': [{'Volumes': [
                {'VolumeId': 'vol-1', 'State': 'available'},
                {'VolumeId': 'vol-2', 'State': 'in-use'},
            ]}],
            'describe_security_groups': [{'SecurityGroups': [{'GroupId': 'sg-1'}]}],
        })

        result = ReportOrphansAction(elbv2_client=elbv2, ec2_client=ec2).run(config, {})

        assert result.success
        assert result.message == '3 orphaned resource(s) found'
        assert result.context_updates['orphans'] == {
            'load_balancers': ['arn:lb/1'], 'volumes': ['vol-1'], 'security_groups': ['sg-1']}

    def test_api_error_does_not_fail_destroy(self, config):
        elbv2 = MagicMock()
        elbv2.get_paginator.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'DescribeLoadBalancers')
        result = ReportOrphansAction(elbv2_client=elbv2, ec2_client=MagicMock()).run(config, {})
        assert not result.success
        assert result.continue_on_failure

    def test_tag_filter(self):
        assert cluster_tag_filter('obs') == [
            {'Name': 'tag:kubernetes.io/cluster/obs', 'Values': ['owned']}]
