import importlib.util
import logging

from nubecompute.compute.clients import RemoteClient, RemoteServer
from nubecompute.compute.provider import Provider
from nubecompute.exceptions import VmNotFound

MISSING_INSTANCE_CODES = ('InvalidInstanceID.NotFound', 'InvalidInstanceID.Malformed')
MISSING_IMAGE_CODES = ('InvalidAMIID.NotFound', 'InvalidAMIID.Malformed')


class EC2Volume:
    def __init__(self, volume):
        self.attributes = {
            'id': volume.id,
            'size': volume.size,
            'volume_type': volume.volume_type,
            'device': volume.attachments[0]['Device'] if volume.attachments else None,
        }


class EC2Server(RemoteServer):
    def __init__(self, instance):
        self.instance = instance

    @property
    def identity(self):
        return self.instance.id

    @property
    def attributes(self):
        tags = {tag['Key']: tag['Value'] for tag in (self.instance.tags or [])}
        return {
            'id': self.instance.id,
            'name': tags.get('Name'),
            'flavor_id': self.instance.instance_type,
            'image_id': self.instance.image_id,
            'availability_zone': self.instance.placement.get('AvailabilityZone'),
            'state': self.instance.state.get('Name'),
            'subnet_id': self.instance.subnet_id,
            'security_group_ids': [g['GroupId'] for g in self.instance.security_groups or []],
            'private_ip_address': self.instance.private_ip_address,
            'public_ip_address': self.instance.public_ip_address,
            'tags': tags,
        }

    @property
    def volumes(self):
        return [EC2Volume(volume) for volume in self.instance.volumes.all()]

    def start(self):
        self.instance.start()
        return True

    def stop(self):
        self.instance.stop()
        return True

    def destroy(self):
        self.instance.terminate()
        return True


class EC2Client(RemoteClient):
    def __init__(self, session):
        self.session = session
        self.ec2 = session.resource('ec2')
        self.logger = logging.getLogger(__name__)

    @property
    def api(self):
        return self.ec2.meta.client

    def list_servers(self, **filters):
        instances = self.ec2.instances.filter(Filters=[
            {'Name': 'instance-state-name',
             'Values': ['pending', 'running', 'stopping', 'stopped']},
        ])
        return [EC2Server(instance) for instance in instances]

    def get_server(self, uuid):
        from botocore.exceptions import ClientError

        instance = self.ec2.Instance(uuid)
        try:
            instance.load()
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in MISSING_INSTANCE_CODES:
                raise VmNotFound("Instância %s não encontrada", uuid) from e
            raise
        if instance.state.get('Name') == 'terminated':
            raise VmNotFound("Instância %s já foi terminada", uuid)
        return EC2Server(instance)

    def create_server(self, params):
        options = {
            'ImageId': params['image_id'],
            'InstanceType': params.get('flavor_id', 't3.micro'),
            'MinCount': 1,
            'MaxCount': 1,
            'TagSpecifications': [{
                'ResourceType': 'instance',
                'Tags': [{'Key': 'Name', 'Value': params['name']}],
            }],
        }
        if params.get('key_name'):
            options['KeyName'] = params['key_name']
        if params.get('security_group_ids'):
            options['SecurityGroupIds'] = list(params['security_group_ids'])
        if params.get('subnet_id'):
            options['SubnetId'] = params['subnet_id']
        if params.get('availability_zone'):
            options['Placement'] = {'AvailabilityZone': params['availability_zone']}
        if params.get('user_data'):
            options['UserData'] = params['user_data']

        instances = self.ec2.create_instances(**options)
        return EC2Server(instances[0])


class EC2Provider(Provider):
    """
    Amazon EC2. A url guarda a região (ex: 'us-east-1'); user e password são
    a access key e a secret key.
    """
    name = 'EC2'

    @classmethod
    def is_available(cls):
        return importlib.util.find_spec('boto3') is not None

    def build_client(self):
        import boto3

        session = boto3.session.Session(
            aws_access_key_id=self.resource.user,
            aws_secret_access_key=self.resource.password,
            region_name=self.region,
        )
        return EC2Client(session)

    @property
    def region(self):
        return self.resource.url

    def test_connection(self, **options):
        if not super().test_connection(**options):
            return False
        try:
            self.client().api.describe_regions(RegionNames=[self.region])
        except Exception as e:
            return self._connection_error(e)
        return True

    def capabilities(self):
        return {'image'}

    def provided_attributes(self):
        return dict(super().provided_attributes(), ip='public_ip_address')

    def user_data_supported(self):
        return True

    def vm_instance_defaults(self):
        return dict(super().vm_instance_defaults(), flavor_id='t3.micro')

    def available_zones(self):
        zones = self.client().api.describe_availability_zones()['AvailabilityZones']
        return [zone['ZoneName'] for zone in zones if zone.get('State') == 'available']

    def available_flavors(self):
        paginator = self.client().api.get_paginator('describe_instance_types')
        return sorted(
            item['InstanceType']
            for page in paginator.paginate()
            for item in page['InstanceTypes']
        )

    def available_images(self):
        images = self.client().api.describe_images(Owners=['self'])['Images']
        return [{'uuid': image['ImageId'], 'name': image.get('Name')} for image in images]

    def available_security_groups(self):
        groups = self.client().api.describe_security_groups()['SecurityGroups']
        return [{'id': group['GroupId'], 'name': group['GroupName']} for group in groups]

    def image_exists(self, image):
        from botocore.exceptions import ClientError

        try:
            images = self.client().api.describe_images(ImageIds=[image])['Images']
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in MISSING_IMAGE_CODES:
                return False
            raise
        return bool(images)
