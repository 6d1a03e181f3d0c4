"""
Copyright 2019 Tad Lebeck

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   http://www.apache.org/licenses/LICENSE-2.0
Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

"""
Lookups of the AWS account state the cluster parameters refer to.

Each resource kind has a list_*() function returning what is available and
a validate_*() (or resolve_*()) function that checks a requested value. A
failed validation raises DeployError naming the available choices, so the
user can correct the parameter without a separate lookup.
"""

import os

import boto3
import botocore.session
from botocore.exceptions import BotoCoreError, ClientError

from kubeaws_deploy import DeployError

# tag applied to resources created on behalf of a cluster
CLUSTER_TAG = 'KubernetesCluster'

DEFAULT_PROFILE = 'default'


def unexpected(exc):
    """Wrap an SDK exception"""
    return DeployError('Unexpected error: %s' % exc)


def error_code(exc):
    return exc.response.get('Error', {}).get('Code', '')


def choices(items):
    return ', '.join(items) if items else '(none)'


def list_profiles():
    """Profiles defined in the AWS config and credentials files"""
    try:
        return sorted(botocore.session.Session().available_profiles)
    except BotoCoreError as exc:
        raise unexpected(exc)


def new_session(profile=None, region=None):
    """Create a boto3 session for the profile and region.

    The 'default' profile may be absent from the files when credentials come
    from the environment, in which case the SDK's own resolution is used.
    """
    if profile == DEFAULT_PROFILE and profile not in list_profiles():
        profile = None
    try:
        return boto3.session.Session(profile_name=profile, region_name=region)
    except BotoCoreError as exc:
        raise DeployError('%s. Available profiles: %s' % (exc, choices(list_profiles())))


def validate_profile(profile, environ=None):
    """check that the profile exists in the AWS config or credentials file
    """
    environ = os.environ if environ is None else environ
    print('Validating profile %s...' % profile, end='')
    profiles = list_profiles()
    if profile in profiles:
        print('ok')
        return
    if profile == DEFAULT_PROFILE and environ.get('AWS_ACCESS_KEY_ID'):
        print('ok, using credentials from the environment')
        return
    print('failed')
    raise DeployError('profile %s not found. Available profiles: %s' %
                      (profile, choices(profiles)))


def validate_credentials(session):
    """Make sure the session can talk to AWS, returns the account id"""
    print('Validating credentials...', end='')
    try:
        identity = session.client('sts').get_caller_identity()
    except (ClientError, BotoCoreError) as exc:
        print('failed')
        raise unexpected(exc)
    print('ok, account %s' % identity['Account'])
    return identity['Account']


def list_regions(session):
    """Regions enabled for the account"""
    try:
        response = session.client('ec2').describe_regions()
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    return sorted(region['RegionName'] for region in response.get('Regions', []))


def validate_region(session, region):
    print('Validating region %s...' % region, end='')
    regions = list_regions(session)
    if region not in regions:
        print('failed')
        raise DeployError('region %s not available. Available regions: %s' %
                          (region, choices(regions)))
    print('ok')


def list_zones(session, region):
    """Availability zones of the region currently in the 'available' state"""
    try:
        client = session.client('ec2', region_name=region)
        response = client.describe_availability_zones(
            Filters=[
                {
                    'Name': 'state',
                    'Values': ['available']
                }
            ]
        )
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    return sorted(zone['ZoneName'] for zone in response.get('AvailabilityZones', []))


def validate_zones(session, region, zones):
    print('Validating availability zones %s...' % ','.join(zones), end='')
    available = list_zones(session, region)
    missing = [zone for zone in zones if zone not in available]
    if missing:
        print('failed')
        raise DeployError('availability zone(s) %s not available in %s. Available zones: %s' %
                          (','.join(missing), region, choices(available)))
    print('ok')


def list_key_pairs(session, region):
    try:
        response = session.client('ec2', region_name=region).describe_key_pairs()
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    return sorted(pair['KeyName'] for pair in response.get('KeyPairs', []))


def import_key_pair(session, region, key_name, public_key_path):
    """Import an SSH public key file as an EC2 key pair"""
    try:
        with open(public_key_path, 'rb') as myfile:
            material = myfile.read()
    except (IOError, OSError) as exc:
        raise DeployError('Unable to read SSH public key: %s' % exc)

    print('Importing %s as key pair %s' % (public_key_path, key_name))
    try:
        session.client('ec2', region_name=region).import_key_pair(
            KeyName=key_name,
            PublicKeyMaterial=material
        )
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)


def validate_key_pair(session, region, key_name, public_key_path=None):
    """Check the EC2 key pair exists in the region.

    If it does not and public_key_path is given, the public key is imported
    under key_name instead of failing.
    """
    print('Validating key pair %s...' % key_name, end='')
    pairs = list_key_pairs(session, region)
    if key_name in pairs:
        print('ok')
        return
    print('not found')
    if public_key_path:
        import_key_pair(session, region, key_name, public_key_path)
        return
    raise DeployError('key pair %s not found in %s. Available key pairs: %s. '
                      'Use --ssh-public-key to import one' % (key_name, region, choices(pairs)))


def strip_zone_id(zone_id):
    """'/hostedzone/Z123' -> 'Z123'"""
    return zone_id.split('/')[-1]


def in_zone(dns_name, zone_name):
    """True if dns_name is the zone apex or a name under it"""
    dns_name, zone_name = dns_name.rstrip('.').lower(), zone_name.rstrip('.').lower()
    return dns_name == zone_name or dns_name.endswith('.' + zone_name)


def list_hosted_zones(session):
    """All Route 53 hosted zones of the account.

    Returns a list of dicts with 'id' (no /hostedzone/ prefix), 'name'
    (no trailing dot) and 'private'.
    """
    zones = []
    try:
        paginator = session.client('route53').get_paginator('list_hosted_zones')
        for page in paginator.paginate():
            for zone in page.get('HostedZones', []):
                zones.append({
                    'id': strip_zone_id(zone['Id']),
                    'name': zone['Name'].rstrip('.').lower(),
                    'private': zone.get('Config', {}).get('PrivateZone', False),
                })
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    return sorted(zones, key=lambda zone: (zone['name'], zone['id']))


def get_hosted_zone(session, zone_id):
    """Look up one hosted zone by id"""
    try:
        response = session.client('route53').get_hosted_zone(Id=zone_id)
    except ClientError as exc:
        if error_code(exc) == 'NoSuchHostedZone':
            raise DeployError('hosted zone %s not found' % zone_id)
        raise unexpected(exc)
    except BotoCoreError as exc:
        raise unexpected(exc)
    zone = response['HostedZone']
    return {
        'id': strip_zone_id(zone['Id']),
        'name': zone['Name'].rstrip('.').lower(),
        'private': zone.get('Config', {}).get('PrivateZone', False),
    }


def pick_zone(candidates, what):
    """Choose between zones sharing a name, preferring a single public zone"""
    public = [zone for zone in candidates if not zone['private']]
    if len(public) == 1:
        return public[0]
    if len(candidates) == 1:
        return candidates[0]
    raise DeployError('%s matches several hosted zones (%s), use --hosted-zone-id' %
                      (what, ', '.join(zone['id'] for zone in candidates)))


def resolve_hosted_zone(session, dns_name, zone_name=None, zone_id=None):
    """Find the hosted zone for the cluster's external DNS name.

    An explicit zone id is checked as is. An explicit zone name must match
    exactly. Otherwise the public zone with the longest name containing the
    DNS name is used. Returns (zone_id, zone_name).
    """
    print('Resolving hosted zone for %s...' % dns_name, end='')
    if zone_id:
        zone = get_hosted_zone(session, strip_zone_id(zone_id))
    else:
        zones = list_hosted_zones(session)
        if zone_name:
            wanted = zone_name.rstrip('.').lower()
            candidates = [zone for zone in zones if zone['name'] == wanted]
            if not candidates:
                print('failed')
                raise DeployError('hosted zone %s not found. Available hosted zones: %s' %
                                  (wanted, choices(sorted(set(z['name'] for z in zones)))))
            zone = pick_zone(candidates, wanted)
        else:
            candidates = [zone for zone in zones
                          if in_zone(dns_name, zone['name']) and not zone['private']]
            if not candidates:
                print('failed')
                raise DeployError('no public hosted zone contains %s. Available hosted zones: %s' %
                                  (dns_name, choices(sorted(set(z['name'] for z in zones)))))
            longest = max(len(zone['name']) for zone in candidates)
            zone = pick_zone([z for z in candidates if len(z['name']) == longest], dns_name)

    if not in_zone(dns_name, zone['name']):
        print('failed')
        raise DeployError('%s is not inside hosted zone %s (%s)' %
                          (dns_name, zone['name'], zone['id']))
    print('%s (%s)' % (zone['id'], zone['name']))
    return zone['id'], zone['name']


def list_buckets(session):
    try:
        response = session.client('s3').list_buckets()
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    return sorted(bucket['Name'] for bucket in response.get('Buckets', []))


def bucket_region(client, bucket):
    """Region of a bucket, mapping the legacy location constraints"""
    location = client.get_bucket_location(Bucket=bucket).get('LocationConstraint')
    if not location:
        return 'us-east-1'
    if location == 'EU':
        return 'eu-west-1'
    return location


def create_bucket(client, bucket, region):
    """create the bucket for the kube-aws assets
    """
    try:
        if region != 'us-east-1':
            res = client.create_bucket(
                ACL='private',
                Bucket=bucket,
                CreateBucketConfiguration={
                    'LocationConstraint': region
                },
            )
        else:
            res = client.create_bucket(
                ACL='private',
                Bucket=bucket,
            )
        print('bucket created at', res['Location'])
    except ClientError as exc:
        code = error_code(exc)
        if code == 'BucketAlreadyOwnedByYou':
            print('Bucket ' + bucket + ' already exists and is owned by user, continuing')
        elif code == 'BucketAlreadyExists':
            raise DeployError('Bucket %s already exists and is owned by someone else, '
                              'choose another --s3-bucket' % bucket)
        else:
            raise unexpected(exc)
    except BotoCoreError as exc:
        raise unexpected(exc)


def validate_bucket(session, bucket, region, create=False):
    """Check the asset bucket is reachable, optionally creating it"""
    print('Validating bucket %s...' % bucket, end='')
    client = session.client('s3', region_name=region)
    try:
        client.head_bucket(Bucket=bucket)
    except ClientError as exc:
        code = error_code(exc)
        if code in ('404', 'NoSuchBucket', 'NotFound'):
            print('not found')
            if not create:
                raise DeployError('bucket %s not found. Available buckets: %s. '
                                  'Use --create-bucket to create it' %
                                  (bucket, choices(list_buckets(session))))
            create_bucket(client, bucket, region)
            return
        print('failed')
        if code in ('403', 'Forbidden', 'AccessDenied'):
            raise DeployError('bucket %s exists but is not accessible, it is probably owned '
                              'by someone else' % bucket)
        raise unexpected(exc)
    except BotoCoreError as exc:
        print('failed')
        raise unexpected(exc)

    try:
        location = bucket_region(client, bucket)
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    print('ok')
    if location != region:
        print('Warning: bucket %s is in %s, the cluster is in %s' % (bucket, location, region))


def list_kms_keys(session, region):
    """Customer managed KMS keys of the region with their aliases.

    Returns a list of (key ARN, [alias names]) tuples.
    """
    client = session.client('kms', region_name=region)
    aliases = {}
    keys = []
    try:
        for page in client.get_paginator('list_aliases').paginate():
            for alias in page.get('Aliases', []):
                if alias['AliasName'].startswith('alias/aws/') or 'TargetKeyId' not in alias:
                    continue
                aliases.setdefault(alias['TargetKeyId'], []).append(alias['AliasName'])
        for page in client.get_paginator('list_keys').paginate():
            for key in page.get('Keys', []):
                keys.append((key['KeyArn'], sorted(aliases.get(key['KeyId'], []))))
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)
    return sorted(keys)


def describe_kms_choices(keys):
    return choices(['%s (%s)' % (arn, ','.join(names)) if names else arn for arn, names in keys])


def validate_kms_key(session, region, key):
    """Check a key ARN, key id or alias and return the key ARN"""
    print('Validating KMS key %s...' % key, end='')
    try:
        response = session.client('kms', region_name=region).describe_key(KeyId=key)
    except ClientError as exc:
        print('failed')
        if error_code(exc) in ('NotFoundException', 'InvalidArnException'):
            raise DeployError('KMS key %s not found in %s. Available keys: %s' %
                              (key, region, describe_kms_choices(list_kms_keys(session, region))))
        raise unexpected(exc)
    except BotoCoreError as exc:
        print('failed')
        raise unexpected(exc)

    metadata = response['KeyMetadata']
    if metadata.get('KeyState') != 'Enabled':
        print('failed')
        raise DeployError('KMS key %s is %s, it must be Enabled' %
                          (metadata['Arn'], metadata.get('KeyState')))
    key_region = metadata['Arn'].split(':')[3]
    if key_region != region:
        print('failed')
        raise DeployError('KMS key %s is in %s, the cluster is in %s' %
                          (metadata['Arn'], key_region, region))
    print('ok')
    return metadata['Arn']


def create_kms_key(session, region, cluster_name):
    """Create a KMS key and alias for the cluster, returns the key ARN"""
    client = session.client('kms', region_name=region)
    alias = 'alias/kube-aws-%s' % cluster_name
    print('Creating KMS key for cluster', cluster_name)
    try:
        response = client.create_key(
            Description='kube-aws credentials for cluster %s' % cluster_name,
            Tags=[
                {
                    'TagKey': CLUSTER_TAG,
                    'TagValue': cluster_name
                }
            ]
        )
    except (ClientError, BotoCoreError) as exc:
        raise unexpected(exc)

    metadata = response['KeyMetadata']
    try:
        client.create_alias(AliasName=alias, TargetKeyId=metadata['KeyId'])
        print('Created KMS key %s with alias %s' % (metadata['Arn'], alias))
    except ClientError as exc:
        if error_code(exc) == 'AlreadyExistsException':
            print('Alias %s already exists, key %s has no alias' % (alias, metadata['Arn']))
        else:
            raise unexpected(exc)
    return metadata['Arn']


def resolve_kms_key(session, region, key, cluster_name, create=False):
    """Return the ARN of the KMS key protecting the cluster credentials"""
    if key:
        return validate_kms_key(session, region, key)
    if create:
        return create_kms_key(session, region, cluster_name)
    raise DeployError('--kms-key is required (or --create-kms-key). Available keys: %s' %
                      describe_kms_choices(list_kms_keys(session, region)))
